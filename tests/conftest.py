"""Shared pytest fixtures for all tests."""

import threading
import time
from pathlib import Path

import pytest

from seriesloader.db.codes import LinkType, Quality
from seriesloader.db.session import get_engine, init_db
from seriesloader.db.store import CatalogStore
from seriesloader.discovery import DiscoveredLink
from seriesloader.exceptions import DownloaderExitError
from seriesloader.urls import episode_from_url


@pytest.fixture
def db_url(tmp_path):
    """SQLite file in a temp dir (a file, so worker threads share it)."""
    return f"sqlite:///{tmp_path / 'catalog.sqlite3'}"


@pytest.fixture
def store(db_url):
    engine = get_engine(db_url)
    init_db(engine)
    yield CatalogStore(engine)
    engine.dispose()


def make_link(url, host="Stub", quality=Quality.UNKNOWN):
    return DiscoveredLink(url=url, host_name=host, type=LinkType.EMBED, quality=quality)


class StubDiscovery:
    """
    Discovery capability driven by a script: episode number -> list of URLs,
    or an Exception instance to raise. Unscripted episodes yield no links.
    """

    name = "Stub"

    def __init__(self, script=None, init_ok=True, host="Stub"):
        self.script = script or {}
        self.init_ok = init_ok
        self.host = host
        self.calls = []
        self.initialized = 0
        self.cleaned = 0

    def can_handle(self, url):
        return "example" in url

    def initialize(self):
        self.initialized += 1
        return self.init_ok

    def cleanup(self):
        self.cleaned += 1

    def extract_links(self, episode_url, context):
        self.calls.append((episode_url, context))
        outcome = self.script.get(episode_from_url(episode_url), [])
        if isinstance(outcome, Exception):
            raise outcome
        return [make_link(u, self.host) for u in outcome]

    def validate_link(self, url):
        return "good" in url


class StubRunner:
    """
    Stands in for YtDlpRunner: writes `<stem>.mp4` next to the output template.
    URLs in `fail` raise a non-zero exit; `produce=False` writes nothing.
    """

    def __init__(self, fail=(), produce=True, delay=0.0, on_run=None):
        self.fail = set(fail)
        self.produce = produce
        self.delay = delay
        self.on_run = on_run
        self.calls = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def run(self, url, output_template, quality="best", timeout=None, merge_format="mp4"):
        with self._lock:
            self.calls.append((url, output_template, quality))
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.on_run:
                self.on_run(url)
            if self.delay:
                time.sleep(self.delay)
            if url in self.fail:
                raise DownloaderExitError(1, "ERROR: Unsupported URL\nmore detail")
            if self.produce:
                Path(output_template.replace("%(ext)s", merge_format)).write_bytes(b"video")
        finally:
            with self._lock:
                self.active -= 1


def seed_episode(store, series_name, season_no, episode_no, urls, host="Stub"):
    """Create series/season/episode rows and attach links; returns the episode."""
    series = store.get_or_create_series(series_name, series_name)
    season = store.get_or_create_season(series, season_no)
    episode = store.get_or_create_episode(season, episode_no, f"https://example.to/e{episode_no}")
    store.add_links_if_absent(episode.id, [make_link(u, host) for u in urls])
    return episode


@pytest.fixture
def stub_runner():
    return StubRunner()
