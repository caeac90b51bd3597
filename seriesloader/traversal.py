"""
traversal: Walk a series episode by episode, harvest links, persist them.

One run = one series. The engine is single-threaded: it owns the discovery
capability for the whole run and drives it strictly in order.
"""
from __future__ import annotations
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

import structlog

from .db.codes import MediaStatus, EpisodeStatus
from .db.store import CatalogStore
from .discovery import EpisodeContext, LinkDiscovery
from .exceptions import DiscoveryFault
from .urls import (
    season_from_url, episode_from_url, increment_episode,
    series_name_from_url, clean_name,
)

log = structlog.get_logger()


class StopReason(str, Enum):
    MAX_CONSECUTIVE_ERRORS = "max_consecutive_errors"
    EPISODE_LIMIT = "episode_limit"
    END_OF_SERIES = "end_of_series"


@dataclass
class TraversalOptions:
    series_name: Optional[str] = None
    preferred_host: str = "auto"
    start_season: int = 1
    start_episode: int = 1
    max_episodes: Optional[int] = None
    max_consecutive_errors: int = 5
    delay_between_episodes: float = 0.5
    delay_after_error: float = 2.0
    continue_on_error: bool = True
    skip_existing_episodes: bool = False
    force_rescrape: bool = False

    def validate(self) -> None:
        if self.start_season < 1 or self.start_episode < 1:
            raise ValueError("start season and episode must be at least 1")
        if self.max_episodes is not None and self.max_episodes < 1:
            raise ValueError("max_episodes must be greater than 0")
        if self.max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be greater than 0")
        if self.delay_between_episodes < 0 or self.delay_after_error < 0:
            raise ValueError("delays must not be negative")


@dataclass
class TraversalResult:
    series_id: Optional[int] = None
    series_name: str = ""
    processed_episodes: int = 0
    skipped_episodes: int = 0
    total_links_found: int = 0
    total_errors: int = 0
    host_statistics: dict[str, int] = field(default_factory=dict)
    error_messages: list[str] = field(default_factory=list)
    stop_reason: Optional[StopReason] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def duration(self) -> float:
        end = self.completed_at or datetime.utcnow()
        return (end - self.started_at).total_seconds()

    @property
    def success_rate(self) -> float:
        if not self.processed_episodes:
            return 0.0
        return (self.processed_episodes - self.total_errors) / self.processed_episodes


class TraversalEngine:
    def __init__(self, store: CatalogStore, discovery: LinkDiscovery,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.discovery = discovery
        self._sleep = sleep

    def run(self, start_url: str, options: TraversalOptions | None = None) -> TraversalResult:
        opts = options or TraversalOptions()
        opts.validate()

        name = opts.series_name or series_name_from_url(start_url)
        series = self.store.get_or_create_series(name, clean_name(name), start_url)
        self.store.set_series_status(series.id, MediaStatus.PROCESSING)
        result = TraversalResult(series_id=series.id, series_name=series.name)
        log.info("traversal_start", series=series.name, url=start_url, capability=self.discovery.name)

        try:
            if not self.discovery.initialize():
                raise DiscoveryFault(f"{self.discovery.name}: initialization failed")
            self._walk(series, start_url, opts, result)
        except KeyboardInterrupt:
            self.store.set_series_status(series.id, MediaStatus.CANCELLED, "interrupted")
            result.completed_at = datetime.utcnow()
            log.warning("traversal_interrupted", series=series.name)
            raise
        except Exception as e:
            self.store.set_series_status(series.id, MediaStatus.FAILED, str(e))
            result.completed_at = datetime.utcnow()
            log.error("traversal_failed", series=series.name, error=str(e))
            raise
        finally:
            self.discovery.cleanup()

        self.store.set_series_status(series.id, MediaStatus.COMPLETED)
        result.completed_at = datetime.utcnow()
        log.info(
            "traversal_done", series=series.name, stop_reason=result.stop_reason.value,
            processed=result.processed_episodes, skipped=result.skipped_episodes,
            links=result.total_links_found, errors=result.total_errors,
        )
        return result

    def _walk(self, series, url: str, opts: TraversalOptions, result: TraversalResult) -> None:
        season_no = opts.start_season
        episode_no = opts.start_episode
        consecutive = 0

        while True:
            from_url = season_from_url(url)
            if from_url is not None:
                season_no = from_url
            from_url = episode_from_url(url)
            if from_url is not None:
                episode_no = from_url

            season = self.store.get_or_create_season(series, season_no)
            episode = self.store.get_or_create_episode(season, episode_no, url)

            skip = False
            if opts.force_rescrape:
                removed = self.store.delete_episode_links(episode.id)
                self.store.set_episode_status(episode.id, EpisodeStatus.PENDING)
                if removed:
                    log.info("episode_reset", season=season_no, episode=episode_no, removed=removed)
            elif opts.skip_existing_episodes and self.store.count_episode_links(episode.id) > 0:
                skip = True
                result.skipped_episodes += 1
                log.info("episode_skipped", season=season_no, episode=episode_no)

            faulted = False
            if not skip:
                ctx = EpisodeContext(series.name, season_no, episode_no, episode.id)
                found, faulted = self._process(episode.id, url, ctx, opts, result)
                result.processed_episodes += 1
                consecutive = 0 if found else consecutive + 1

            if consecutive >= opts.max_consecutive_errors:
                log.warning("too_many_errors", consecutive=consecutive)
                result.stop_reason = StopReason.MAX_CONSECUTIVE_ERRORS
                return
            if opts.max_episodes and result.processed_episodes >= opts.max_episodes:
                result.stop_reason = StopReason.EPISODE_LIMIT
                return

            # the on-page "next" link is only trustworthy for a page that was just rendered
            rendered = not skip and not faulted
            next_url = self._next_url(url) if rendered else increment_episode(url)
            if not next_url or next_url == url:
                result.stop_reason = StopReason.END_OF_SERIES
                return

            next_season = season_from_url(next_url)
            if next_season is not None and next_season > season_no:
                log.info("season_boundary", season_from=season_no, season_to=next_season)
                episode_no = 1
            else:
                episode_no += 1
            url = next_url
            self._sleep(opts.delay_after_error if faulted else opts.delay_between_episodes)

    def _process(self, episode_id: int, url: str, ctx: EpisodeContext,
                 opts: TraversalOptions, result: TraversalResult) -> tuple[bool, bool]:
        """Returns (links_found, faulted)."""
        self.store.set_episode_status(episode_id, EpisodeStatus.PROCESSING)
        try:
            links = self.discovery.extract_links(url, ctx)
        except Exception as e:
            msg = f"S{ctx.season_number}E{ctx.episode_number}: {e}"
            self.store.set_episode_status(episode_id, EpisodeStatus.FAILED, str(e))
            result.total_errors += 1
            result.error_messages.append(msg)
            log.error("episode_failed", season=ctx.season_number, episode=ctx.episode_number,
                      url=url, error=str(e))
            if not opts.continue_on_error:
                if isinstance(e, DiscoveryFault):
                    raise
                raise DiscoveryFault(msg) from e
            return False, True

        if not links:
            self.store.set_episode_status(episode_id, EpisodeStatus.NO_LINKS_FOUND)
            result.total_errors += 1
            result.error_messages.append(f"S{ctx.season_number}E{ctx.episode_number}: no links found")
            log.warning("no_links", season=ctx.season_number, episode=ctx.episode_number, url=url)
            return False, False

        per_host = self.store.save_episode_links(episode_id, links)
        inserted = 0
        for host, n in per_host.items():
            result.host_statistics[host] = result.host_statistics.get(host, 0) + n
            inserted += n
        result.total_links_found += inserted
        log.info("links_found", season=ctx.season_number, episode=ctx.episode_number,
                 found=len(links), inserted=inserted)
        return True, False

    def _next_url(self, url: str) -> Optional[str]:
        finder = getattr(self.discovery, "next_episode_url", None)
        if finder is not None:
            try:
                candidate = finder(url)
            except Exception as e:
                log.warning("next_episode_lookup_failed", url=url, error=str(e))
                candidate = None
            if candidate and candidate != url and _moves_forward(url, candidate):
                return candidate
            if candidate:
                log.debug("next_episode_rejected", url=url, candidate=candidate)
        return increment_episode(url)


def _moves_forward(current: str, candidate: str) -> bool:
    """False when `candidate` points at an earlier or the same season/episode."""
    cur = (season_from_url(current), episode_from_url(current))
    nxt = (season_from_url(candidate), episode_from_url(candidate))
    if nxt[0] is not None and cur[0] is not None and nxt[0] != cur[0]:
        return nxt[0] > cur[0]
    if nxt[1] is not None and cur[1] is not None:
        return nxt[1] > cur[1]
    return True
