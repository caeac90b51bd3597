"""
downloader: Drain pending catalog links through yt-dlp with a fixed-size pool.

Each link is one job. A job writes only its own link row, and jobs that
resolve to the same target file run one after another.
"""
from __future__ import annotations
import importlib.util
import os
import shutil
import subprocess
import sys
import threading
import uuid
import weakref
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from .db.codes import DownloadStatus
from .db.store import CatalogStore
from .exceptions import (
    DownloaderExitError, DownloaderStartError, DownloaderTimeout, DownloadOutputMissing,
    PersistenceFault,
)
from .urls import directory_name, file_stem

log = structlog.get_logger()

VIDEO_EXTS = (".mp4", ".mkv", ".avi", ".mov", ".webm")
_PARTIAL_EXTS = {".part", ".ytdl"}


def _yt_dlp_cmd(configured: str | None = None) -> list[str] | None:
    if configured:
        return [configured]
    exe = shutil.which("yt-dlp") or shutil.which("yt_dlp")
    if exe:
        return [exe]
    # fallback to python -m if module is available
    if importlib.util.find_spec("yt_dlp") is not None:
        return [sys.executable, "-m", "yt_dlp"]
    return None


class YtDlpRunner:
    """Runs one yt-dlp process per call and maps failures onto the fault classes."""

    def __init__(self, executable: str | None = None):
        self.executable = executable

    def build_args(self, url: str, output_template: str, quality: str, merge_format: str) -> list[str]:
        return [
            url,
            "--output", output_template,
            "--format", quality,
            "--merge-output-format", merge_format,
            "--no-playlist",
            "--no-warnings",
            "--quiet",
        ]

    def run(self, url: str, output_template: str, quality: str = "best",
            timeout: float | None = None, merge_format: str = "mp4") -> None:
        cmd = _yt_dlp_cmd(self.executable)
        if not cmd:
            raise DownloaderStartError("yt-dlp is not installed or importable")
        cmd = cmd + self.build_args(url, output_template, quality, merge_format)
        log.info("yt-dlp_command", command=" ".join(cmd))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise DownloaderTimeout(f"yt-dlp exceeded {timeout:.0f}s for {url}") from e
        except OSError as e:
            raise DownloaderStartError(f"cannot start yt-dlp: {e}") from e
        if proc.returncode != 0:
            raise DownloaderExitError(proc.returncode, proc.stderr or proc.stdout or "")


def find_downloaded_file(directory: Path, stem: str) -> Path | None:
    """The file yt-dlp produced for `stem`; partial downloads are ignored."""
    candidates = sorted(
        p for p in directory.glob(f"{stem}.*")
        if p.is_file() and p.suffix.lower() not in _PARTIAL_EXTS
    )
    if not candidates:
        return None
    for ext in VIDEO_EXTS:
        for p in candidates:
            if p.suffix.lower() == ext:
                return p
    return candidates[0]


@dataclass
class DownloadOptions:
    series_name: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    output_dir: str = "./Downloads"
    max_parallel: int = 2
    quality: str = "best"
    overwrite_existing: bool = False
    timeout_minutes: int = 30
    merge_format: str = "mp4"

    def validate(self) -> None:
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be greater than 0")
        if self.timeout_minutes < 1:
            raise ValueError("timeout_minutes must be greater than 0")
        if not self.output_dir:
            raise ValueError("output_dir must not be empty")
        if not self.quality:
            raise ValueError("quality must not be empty")


@dataclass
class DownloadError:
    link_id: int
    url: str
    kind: str
    message: str


@dataclass
class DownloadResult:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    errors: list[DownloadError] = field(default_factory=list)
    quality_breakdown: dict[str, int] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def duration(self) -> float:
        end = self.completed_at or datetime.utcnow()
        return (end - self.started_at).total_seconds()

    @property
    def success_rate(self) -> float:
        return self.succeeded / self.total if self.total else 0.0


def target_path(output_dir: str | Path, series_name: str, season: int, episode: int,
                ext: str = "mp4") -> Path:
    season_dir = Path(output_dir) / directory_name(series_name) / f"Season {season:02d}"
    return season_dir / f"{file_stem(series_name, season, episode)}.{ext}"


class DownloadScheduler:
    def __init__(self, store: CatalogStore, runner: YtDlpRunner | None = None):
        self.store = store
        self.runner = runner or YtDlpRunner()
        self._cancel = threading.Event()
        self._path_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._path_guard = threading.Lock()
        self._result_lock = threading.Lock()

    def cancel(self) -> None:
        """Jobs that have not started yet are skipped; running ones finish."""
        self._cancel.set()

    def _path_lock(self, path: Path) -> threading.Lock:
        key = str(path.resolve())
        with self._path_guard:
            lock = self._path_locks.get(key)
            if lock is None:
                lock = self._path_locks[key] = threading.Lock()
            return lock

    def start_downloads(self, options: DownloadOptions | None = None) -> DownloadResult:
        opts = options or DownloadOptions()
        opts.validate()
        self._cancel.clear()

        links = self.store.get_pending_download_links(opts.series_name, opts.season, opts.episode)
        result = DownloadResult(total=len(links))
        if not links:
            log.info("no_pending_links", series=opts.series_name)
            result.completed_at = datetime.utcnow()
            return result

        log.info("downloads_start", total=len(links), parallel=opts.max_parallel, quality=opts.quality)
        interrupted: KeyboardInterrupt | None = None
        with ThreadPoolExecutor(max_workers=opts.max_parallel, thread_name_prefix="download") as pool:
            futures = [pool.submit(self._job, link, opts, result) for link in links]
            try:
                for f in as_completed(futures):
                    f.result()
            except KeyboardInterrupt as e:
                log.warning("downloads_interrupted")
                self.cancel()
                interrupted = e

        result.completed_at = datetime.utcnow()
        log.info(
            "downloads_done", total=result.total, succeeded=result.succeeded,
            failed=result.failed, skipped=result.skipped, cancelled=result.cancelled,
        )
        if interrupted is not None:
            raise interrupted
        return result

    def _job(self, link, opts: DownloadOptions, result: DownloadResult) -> None:
        if self._cancel.is_set():
            with self._result_lock:
                result.cancelled += 1
            return
        try:
            self._download(link, opts, result)
        except PersistenceFault as e:
            # the status row could not be written; the run goes on without it
            log.error("download_status_write_failed", link_id=link.id, error=str(e))
            with self._result_lock:
                result.failed += 1
                result.errors.append(DownloadError(link.id, link.url, e.kind, str(e)))

    def _download(self, link, opts: DownloadOptions, result: DownloadResult) -> None:
        episode = link.episode
        season = episode.season
        series = season.series
        target = target_path(opts.output_dir, series.name, season.number, episode.number, opts.merge_format)

        with self._path_lock(target):
            if target.exists() and not opts.overwrite_existing:
                self.store.update_link_download_status(link.id, DownloadStatus.COMPLETED, path=str(target))
                log.info("download_skipped_exists", link_id=link.id, path=str(target))
                with self._result_lock:
                    result.skipped += 1
                return

            temp_stem = f"temp_{uuid.uuid4().hex}"
            try:
                self.store.update_link_download_status(link.id, DownloadStatus.DOWNLOADING)
                target.parent.mkdir(parents=True, exist_ok=True)
                log.info("download_start", link_id=link.id, series=series.name,
                         season=season.number, episode=episode.number)
                self.runner.run(
                    link.url,
                    str(target.parent / f"{temp_stem}.%(ext)s"),
                    quality=opts.quality,
                    timeout=opts.timeout_minutes * 60,
                    merge_format=opts.merge_format,
                )
                produced = find_downloaded_file(target.parent, temp_stem)
                if produced is None:
                    raise DownloadOutputMissing(f"yt-dlp succeeded but produced no file for {link.url}")
                os.replace(produced, target)
            except Exception as e:
                kind = getattr(e, "kind", "error")
                log.error("download_failed", link_id=link.id, kind=kind, error=str(e))
                for leftover in target.parent.glob(f"{temp_stem}.*"):
                    leftover.unlink(missing_ok=True)
                self.store.update_link_download_status(link.id, DownloadStatus.FAILED, error=str(e))
                with self._result_lock:
                    result.failed += 1
                    result.errors.append(DownloadError(link.id, link.url, kind, str(e)))
                return

            self.store.update_link_download_status(link.id, DownloadStatus.COMPLETED, path=str(target))
            log.info("download_done", link_id=link.id, path=str(target))
            with self._result_lock:
                result.succeeded += 1
                q = link.quality.value
                result.quality_breakdown[q] = result.quality_breakdown.get(q, 0) + 1
