"""
CatalogStore: the one gateway to the series/season/episode/link catalog.

Every public method opens its own session and commits a single transaction,
so callers on different threads never share a session. Rows come back
detached; the relationships each caller needs are eager-loaded.
"""
from __future__ import annotations
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import structlog
from sqlalchemy import select, delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import contains_eager, selectinload

from .codes import MediaStatus, EpisodeStatus, DownloadStatus
from .models import Series, Season, Episode, DownloadableLink
from .session import make_session_factory
from ..exceptions import PersistenceFault

log = structlog.get_logger()


@dataclass
class SeriesSummary:
    id: int
    name: str
    status: MediaStatus
    created_at: datetime
    total_seasons: int
    total_episodes: int
    found_links: int
    completed_downloads: int


@dataclass
class CatalogStats:
    total_series: int = 0
    total_seasons: int = 0
    total_episodes: int = 0
    total_links: int = 0
    valid_links: int = 0
    completed_downloads: int = 0
    pending_downloads: int = 0
    failed_downloads: int = 0

    @property
    def valid_links_percentage(self) -> float:
        return self.valid_links / self.total_links * 100 if self.total_links else 0.0

    @property
    def completion_rate(self) -> float:
        return self.completed_downloads / self.total_links * 100 if self.total_links else 0.0


def _series_filter(name: str):
    return or_(Series.name == name, Series.clean_name == name)


class CatalogStore:
    def __init__(self, engine):
        self.engine = engine
        self._factory = make_session_factory(engine)
        # entries vanish once no caller holds the lock
        self._locks: weakref.WeakValueDictionary[int, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ---------- plumbing ----------

    @contextmanager
    def _tx(self):
        try:
            with self._factory() as s, s.begin():
                yield s
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            log.error("store_error", error=str(e))
            raise PersistenceFault(str(e)) from e

    def _series_lock(self, series_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(series_id)
            if lock is None:
                lock = self._locks[series_id] = threading.Lock()
            return lock

    def _hierarchy_query(self, series_name: Optional[str] = None):
        q = (
            select(DownloadableLink)
            .join(DownloadableLink.episode)
            .join(Episode.season)
            .join(Season.series)
            .options(
                contains_eager(DownloadableLink.episode)
                .contains_eager(Episode.season)
                .contains_eager(Season.series)
            )
        )
        if series_name:
            q = q.where(_series_filter(series_name))
        return q.order_by(Series.name, Season.number, Episode.number, DownloadableLink.id)

    # ---------- series / season / episode ----------

    def get_or_create_series(self, name: str, clean_name: str, original_url: str | None = None) -> Series:
        with self._tx() as s:
            row = s.scalars(
                select(Series)
                .where(or_(_series_filter(name), _series_filter(clean_name)))
                .order_by(Series.id)
            ).first()
            if row:
                return row
            row = Series(
                name=name, clean_name=clean_name, original_url=original_url,
                status=MediaStatus.PROCESSING,
            )
            s.add(row)
        log.info("series_created", series=name, id=row.id)
        return row

    def set_series_status(self, series_id: int, status: MediaStatus, error: str | None = None) -> None:
        with self._tx() as s:
            row = s.get(Series, series_id)
            if row is None:
                raise PersistenceFault(f"series {series_id} not found")
            row.update_status(status, error)

    def get_or_create_season(self, series: Series, number: int) -> Season:
        stmt = select(Season).where(Season.series_id == series.id, Season.number == number)
        with self._series_lock(series.id):
            with self._tx() as s:
                row = s.scalars(stmt).first()
                if row:
                    return row
            try:
                with self._tx() as s:
                    row = Season(series_id=series.id, number=number)
                    s.add(row)
                return row
            except IntegrityError:
                log.debug("season_insert_race", series_id=series.id, number=number)
            with self._tx() as s:
                return s.scalars(stmt).one()

    def get_or_create_episode(self, season: Season, number: int, url: str | None = None) -> Episode:
        stmt = select(Episode).where(Episode.season_id == season.id, Episode.number == number)
        with self._series_lock(season.series_id):
            with self._tx() as s:
                row = s.scalars(stmt).first()
                if row:
                    return row
            try:
                with self._tx() as s:
                    row = Episode(
                        season_id=season.id, number=number, original_url=url,
                        status=EpisodeStatus.PENDING,
                    )
                    s.add(row)
                return row
            except IntegrityError:
                log.debug("episode_insert_race", season_id=season.id, number=number)
            with self._tx() as s:
                return s.scalars(stmt).one()

    def find_episode(self, series_id: int, season_number: int, episode_number: int) -> Episode | None:
        with self._tx() as s:
            return s.scalars(
                select(Episode)
                .join(Episode.season)
                .where(
                    Season.series_id == series_id,
                    Season.number == season_number,
                    Episode.number == episode_number,
                )
            ).first()

    def set_episode_status(self, episode_id: int, status: EpisodeStatus, error: str | None = None) -> None:
        with self._tx() as s:
            row = s.get(Episode, episode_id)
            if row is None:
                raise PersistenceFault(f"episode {episode_id} not found")
            row.update_status(status, error)

    # ---------- links ----------

    def count_episode_links(self, episode_id: int) -> int:
        with self._tx() as s:
            return s.scalar(
                select(func.count(DownloadableLink.id)).where(DownloadableLink.episode_id == episode_id)
            ) or 0

    def delete_episode_links(self, episode_id: int) -> int:
        with self._tx() as s:
            res = s.execute(delete(DownloadableLink).where(DownloadableLink.episode_id == episode_id))
            return res.rowcount or 0

    def add_links_if_absent(self, episode_id: int, links: Iterable) -> int:
        """Insert the links whose URL is new for this episode; returns how many were added."""
        return sum(self._insert_links(episode_id, links).values())

    def save_episode_links(self, episode_id: int, links: Iterable) -> dict[str, int]:
        """
        Store a discovery result: new links plus the episode's LINKS_FOUND status,
        committed together. Returns inserted counts per host.
        """
        return self._insert_links(episode_id, links, status=EpisodeStatus.LINKS_FOUND)

    def _insert_links(self, episode_id: int, links: Iterable,
                      status: EpisodeStatus | None = None) -> dict[str, int]:
        candidates = []
        seen: set[str] = set()
        for link in links:
            if link.url in seen:
                continue
            seen.add(link.url)
            candidates.append(link)

        def _row(link) -> DownloadableLink:
            return DownloadableLink(
                episode_id=episode_id, url=link.url, host_name=link.host_name,
                type=link.type, quality=link.quality,
            )

        def _count(inserted) -> dict[str, int]:
            per_host: dict[str, int] = {}
            for l in inserted:
                per_host[l.host_name] = per_host.get(l.host_name, 0) + 1
            return per_host

        try:
            with self._tx() as s:
                existing = set(s.scalars(
                    select(DownloadableLink.url).where(
                        DownloadableLink.episode_id == episode_id,
                        DownloadableLink.url.in_(seen),
                    )
                )) if seen else set()
                fresh = [l for l in candidates if l.url not in existing]
                s.add_all(_row(l) for l in fresh)
                if status is not None:
                    episode = s.get(Episode, episode_id)
                    if episode is None:
                        raise PersistenceFault(f"episode {episode_id} not found")
                    episode.update_status(status)
            return _count(fresh)
        except IntegrityError:
            log.warning("link_batch_conflict", episode_id=episode_id)

        # someone else inserted part of the batch; go one by one
        inserted = []
        for link in candidates:
            try:
                with self._tx() as s:
                    present = s.scalar(
                        select(DownloadableLink.id).where(
                            DownloadableLink.episode_id == episode_id,
                            DownloadableLink.url == link.url,
                        )
                    )
                    if present is not None:
                        continue
                    s.add(_row(link))
                inserted.append(link)
            except IntegrityError:
                continue
        if status is not None:
            self.set_episode_status(episode_id, status)
        return _count(inserted)

    def get_pending_download_links(
        self,
        series_name: str | None = None,
        season: int | None = None,
        episode: int | None = None,
    ) -> list[DownloadableLink]:
        q = self._hierarchy_query(series_name).where(
            DownloadableLink.is_valid.is_(True),
            DownloadableLink.download_status == DownloadStatus.NOT_STARTED,
        )
        if season is not None:
            q = q.where(Season.number == season)
        if episode is not None:
            q = q.where(Episode.number == episode)
        with self._tx() as s:
            return list(s.scalars(q).unique())

    def update_link_download_status(
        self,
        link_id: int,
        status: DownloadStatus,
        error: str | None = None,
        path: str | None = None,
    ) -> None:
        with self._tx() as s:
            row = s.get(DownloadableLink, link_id)
            if row is None:
                raise PersistenceFault(f"link {link_id} not found")
            row.update_download_status(status, error=error, path=path)

    def get_links_for_validation(
        self, series_name: str | None = None, force: bool = False, limit: int | None = None
    ) -> list[DownloadableLink]:
        q = self._hierarchy_query(series_name)
        if not force:
            q = q.where(DownloadableLink.is_tested.is_(False))
        if limit:
            q = q.limit(limit)
        with self._tx() as s:
            return list(s.scalars(q).unique())

    def mark_link_validated(self, link_id: int, is_valid: bool, error: str | None = None) -> None:
        with self._tx() as s:
            row = s.get(DownloadableLink, link_id)
            if row is None:
                raise PersistenceFault(f"link {link_id} not found")
            row.mark_validated(is_valid, error)

    def get_links_for_export(self, series_name: str | None = None) -> list[DownloadableLink]:
        with self._tx() as s:
            return list(s.scalars(self._hierarchy_query(series_name)).unique())

    # ---------- reporting ----------

    def get_series(self, name: str) -> Series | None:
        with self._tx() as s:
            return s.scalars(
                select(Series)
                .where(_series_filter(name))
                .options(
                    selectinload(Series.seasons)
                    .selectinload(Season.episodes)
                    .selectinload(Episode.links)
                )
                .order_by(Series.id)
            ).first()

    def list_series(self) -> list[SeriesSummary]:
        out: list[SeriesSummary] = []
        with self._tx() as s:
            for row in s.scalars(select(Series).order_by(Series.name)):
                seasons = s.scalar(select(func.count(Season.id)).where(Season.series_id == row.id)) or 0
                episodes = s.scalar(
                    select(func.count(Episode.id)).join(Episode.season).where(Season.series_id == row.id)
                ) or 0
                link_q = (
                    select(func.count(DownloadableLink.id))
                    .join(DownloadableLink.episode)
                    .join(Episode.season)
                    .where(Season.series_id == row.id)
                )
                links = s.scalar(link_q) or 0
                done = s.scalar(
                    link_q.where(DownloadableLink.download_status == DownloadStatus.COMPLETED)
                ) or 0
                out.append(SeriesSummary(
                    id=row.id, name=row.name, status=row.status, created_at=row.created_at,
                    total_seasons=seasons, total_episodes=episodes,
                    found_links=links, completed_downloads=done,
                ))
        return out

    def statistics(self) -> CatalogStats:
        def count(model, *where) -> int:
            return s.scalar(select(func.count(model.id)).where(*where)) or 0

        with self._tx() as s:
            return CatalogStats(
                total_series=count(Series),
                total_seasons=count(Season),
                total_episodes=count(Episode),
                total_links=count(DownloadableLink),
                valid_links=count(DownloadableLink, DownloadableLink.is_valid.is_(True)),
                completed_downloads=count(
                    DownloadableLink, DownloadableLink.download_status == DownloadStatus.COMPLETED
                ),
                pending_downloads=count(
                    DownloadableLink, DownloadableLink.download_status == DownloadStatus.NOT_STARTED
                ),
                failed_downloads=count(
                    DownloadableLink, DownloadableLink.download_status == DownloadStatus.FAILED
                ),
            )

    # ---------- cleanup ----------

    def _bulk_delete(self, model, condition, what: str, dry_run: bool) -> int:
        try:
            with self._tx() as s:
                n = s.scalar(select(func.count(model.id)).where(condition)) or 0
                if n and not dry_run:
                    s.execute(delete(model).where(condition).execution_options(synchronize_session=False))
        except (SQLAlchemyError, PersistenceFault) as e:
            log.error("cleanup_failed", what=what, error=str(e))
            return 0
        log.info("cleanup_done", what=what, count=n, dry_run=dry_run)
        return n

    def cleanup_invalid_links(self, older_than: datetime, dry_run: bool = False) -> int:
        cond = (DownloadableLink.is_valid.is_(False)) & (DownloadableLink.last_validated < older_than)
        return self._bulk_delete(DownloadableLink, cond, "invalid_links", dry_run)

    def cleanup_failed_series(self, older_than: datetime, dry_run: bool = False) -> int:
        cond = (Series.status == MediaStatus.FAILED) & (Series.created_at < older_than)
        return self._bulk_delete(Series, cond, "failed_series", dry_run)

    def cleanup_empty_series(self, dry_run: bool = False) -> int:
        with_links = (
            select(Season.series_id)
            .join(Season.episodes)
            .join(Episode.links)
        )
        return self._bulk_delete(Series, Series.id.not_in(with_links), "empty_series", dry_run)
