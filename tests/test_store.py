"""Tests for db/store.py: catalog persistence, uniqueness and cleanup."""

import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import text

from seriesloader.db.codes import DownloadStatus, EpisodeStatus, MediaStatus
from seriesloader.exceptions import PersistenceFault

from conftest import make_link, seed_episode


def _days_ago(days):
    """Timestamp in the format SQLAlchemy stores SQLite DATETIME columns."""
    return (datetime.utcnow() - timedelta(days=days)).strftime("%Y-%m-%d %H:%M:%S.%f")


def test_get_or_create_series_matches_name_or_clean_name(store):
    """A series is found again by its name or its clean name."""
    first = store.get_or_create_series("My Show: Redux", "My Show_ Redux", "https://example.to/serie/my-show")
    again = store.get_or_create_series("My Show: Redux", "My Show_ Redux")
    by_clean = store.get_or_create_series("My Show_ Redux", "My Show_ Redux")
    assert first.id == again.id == by_clean.id
    assert first.status == MediaStatus.PROCESSING


def test_get_or_create_season_is_idempotent_across_threads(store):
    """Concurrent get-or-create of the same season yields one row."""
    series = store.get_or_create_series("Threads", "Threads")
    ids = []
    lock = threading.Lock()

    def worker():
        season = store.get_or_create_season(series, 1)
        with lock:
            ids.append(season.id)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(ids)) == 1
    with store.engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM seasons")).scalar() == 1


def test_get_or_create_episode_is_idempotent(store):
    series = store.get_or_create_series("Show", "Show")
    season = store.get_or_create_season(series, 2)
    a = store.get_or_create_episode(season, 5, "https://example.to/staffel-2/episode-5")
    b = store.get_or_create_episode(season, 5, "https://example.to/other")
    assert a.id == b.id
    assert b.original_url == "https://example.to/staffel-2/episode-5"
    assert store.find_episode(series.id, 2, 5).id == a.id
    assert store.find_episode(series.id, 2, 6) is None


def test_add_links_if_absent_skips_duplicates(store):
    """Duplicates in the batch and already stored URLs are not inserted again."""
    ep = seed_episode(store, "Show", 1, 1, [])
    n = store.add_links_if_absent(ep.id, [make_link("https://a"), make_link("https://a"), make_link("https://b")])
    assert n == 2
    n = store.add_links_if_absent(ep.id, [make_link("https://b"), make_link("https://c")])
    assert n == 1
    assert store.count_episode_links(ep.id) == 3
    assert store.add_links_if_absent(ep.id, []) == 0


def test_same_url_allowed_on_different_episodes(store):
    ep1 = seed_episode(store, "Show", 1, 1, ["https://same"])
    ep2 = seed_episode(store, "Show", 1, 2, ["https://same"])
    assert store.count_episode_links(ep1.id) == 1
    assert store.count_episode_links(ep2.id) == 1


def test_delete_episode_links(store):
    ep = seed_episode(store, "Show", 1, 1, ["https://a", "https://b"])
    assert store.delete_episode_links(ep.id) == 2
    assert store.count_episode_links(ep.id) == 0


def test_pending_links_ordered_by_series_season_episode(store):
    """Pending links come back ordered and with their hierarchy loaded."""
    seed_episode(store, "Beta", 1, 1, ["https://beta-1"])
    seed_episode(store, "Alpha", 2, 1, ["https://alpha-2-1"])
    seed_episode(store, "Alpha", 1, 3, ["https://alpha-1-3"])
    seed_episode(store, "Alpha", 1, 1, ["https://alpha-1-1a", "https://alpha-1-1b"])

    links = store.get_pending_download_links()
    assert [l.url for l in links] == [
        "https://alpha-1-1a", "https://alpha-1-1b", "https://alpha-1-3",
        "https://alpha-2-1", "https://beta-1",
    ]
    assert links[0].episode.season.series.name == "Alpha"

    only_alpha_s1 = store.get_pending_download_links("Alpha", season=1)
    assert len(only_alpha_s1) == 3
    only_ep3 = store.get_pending_download_links("Alpha", season=1, episode=3)
    assert [l.url for l in only_ep3] == ["https://alpha-1-3"]


def test_pending_links_exclude_invalid_and_started(store):
    seed_episode(store, "Show", 1, 1, ["https://a", "https://b", "https://c"])
    a, b, c = store.get_pending_download_links()
    store.mark_link_validated(a.id, False, "404")
    store.update_link_download_status(b.id, DownloadStatus.COMPLETED, path="/tmp/x.mp4")
    assert [l.id for l in store.get_pending_download_links()] == [c.id]


def test_download_status_timestamps(store):
    """Downloading sets the start time; completed sets the end time and path."""
    seed_episode(store, "Show", 1, 1, ["https://a"])
    link = store.get_pending_download_links()[0]

    store.update_link_download_status(link.id, DownloadStatus.DOWNLOADING)
    row = store.get_links_for_export()[0]
    assert row.download_status == DownloadStatus.DOWNLOADING
    assert row.download_started is not None
    assert row.download_completed is None

    store.update_link_download_status(link.id, DownloadStatus.COMPLETED, path="/videos/ShowS1F01.mp4")
    row = store.get_links_for_export()[0]
    assert row.download_completed is not None
    assert row.download_path == "/videos/ShowS1F01.mp4"


def test_episode_status_links_found_sets_processed_at(store):
    ep = seed_episode(store, "Show", 1, 1, [])
    series_id = store.get_series("Show").id
    store.set_episode_status(ep.id, EpisodeStatus.NO_LINKS_FOUND)
    assert store.find_episode(series_id, 1, 1).processed_at is None
    store.set_episode_status(ep.id, EpisodeStatus.LINKS_FOUND)
    found = store.find_episode(series_id, 1, 1)
    assert found.status == EpisodeStatus.LINKS_FOUND
    assert found.processed_at is not None


def test_mark_link_validated(store):
    seed_episode(store, "Show", 1, 1, ["https://a"])
    link = store.get_links_for_validation()[0]
    store.mark_link_validated(link.id, False, "timeout")
    assert store.get_links_for_validation() == []
    row = store.get_links_for_validation(force=True)[0]
    assert row.is_tested is True
    assert row.is_valid is False
    assert row.validation_error == "timeout"
    assert row.last_validated is not None


def test_get_series_loads_hierarchy(store):
    seed_episode(store, "Show", 1, 1, ["https://a", "https://b"])
    seed_episode(store, "Show", 2, 1, ["https://c"])
    row = store.get_series("Show")
    assert row.total_seasons == 2
    assert row.total_episodes == 2
    assert row.found_links == 3
    assert [s.number for s in row.seasons] == [1, 2]
    assert store.get_series("Missing") is None


def test_list_series_and_statistics(store):
    seed_episode(store, "Show", 1, 1, ["https://a", "https://b"])
    seed_episode(store, "Other", 1, 1, ["https://c", "https://d"])
    links = store.get_pending_download_links()
    store.update_link_download_status(links[0].id, DownloadStatus.COMPLETED, path="/x")
    store.update_link_download_status(links[1].id, DownloadStatus.FAILED, error="boom")
    store.mark_link_validated(links[2].id, False)

    stats = store.statistics()
    assert stats.total_series == 2
    assert stats.total_seasons == 2
    assert stats.total_episodes == 2
    assert stats.total_links == 4
    assert stats.valid_links == 3
    assert stats.completed_downloads == 1
    assert stats.failed_downloads == 1
    assert stats.pending_downloads == 2
    assert stats.valid_links_percentage == 75.0
    assert stats.completion_rate == 25.0

    summaries = {s.name: s for s in store.list_series()}
    assert summaries["Other"].found_links == 2
    assert summaries["Other"].completed_downloads == 1
    assert summaries["Show"].total_episodes == 1


def test_statistics_on_empty_catalog(store):
    stats = store.statistics()
    assert stats.total_links == 0
    assert stats.valid_links_percentage == 0.0
    assert stats.completion_rate == 0.0


def test_cleanup_invalid_links(store):
    """Only invalid links validated before the cutoff are removed; dry run deletes nothing."""
    seed_episode(store, "Show", 1, 1, ["https://old-bad", "https://fresh-bad", "https://ok"])
    old, fresh, _ok = store.get_links_for_validation()
    store.mark_link_validated(old.id, False)
    store.mark_link_validated(fresh.id, False)
    with store.engine.begin() as conn:
        conn.execute(
            text("UPDATE links SET last_validated = :ts WHERE id = :id"),
            {"ts": _days_ago(40), "id": old.id},
        )

    cutoff = datetime.utcnow() - timedelta(days=30)
    assert store.cleanup_invalid_links(cutoff, dry_run=True) == 1
    assert len(store.get_links_for_export()) == 3
    assert store.cleanup_invalid_links(cutoff) == 1
    assert [l.url for l in store.get_links_for_export()] == ["https://fresh-bad", "https://ok"]


def test_cleanup_failed_series_cascades(store):
    seed_episode(store, "Broken", 1, 1, ["https://a"])
    seed_episode(store, "Fine", 1, 1, ["https://b"])
    broken = store.get_series("Broken")
    store.set_series_status(broken.id, MediaStatus.FAILED, "boom")
    with store.engine.begin() as conn:
        conn.execute(
            text("UPDATE series SET created_at = :ts WHERE id = :id"),
            {"ts": _days_ago(60), "id": broken.id},
        )

    assert store.cleanup_failed_series(datetime.utcnow() - timedelta(days=30)) == 1
    assert store.get_series("Broken") is None
    assert [l.url for l in store.get_links_for_export()] == ["https://b"]
    with store.engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM seasons")).scalar() == 1


def test_cleanup_empty_series(store):
    store.get_or_create_series("Empty", "Empty")
    seed_episode(store, "NoLinks", 1, 1, [])
    seed_episode(store, "Full", 1, 1, ["https://a"])
    assert store.cleanup_empty_series(dry_run=True) == 2
    assert store.cleanup_empty_series() == 2
    assert [s.name for s in store.list_series()] == ["Full"]



def test_save_episode_links_sets_status_with_links(store):
    """Links and the LINKS_FOUND status are stored together; per-host counts come back."""
    episode = seed_episode(store, "Show", 1, 1, [])
    found = [
        make_link("https://vidmoly.to/embed-a.html", "Vidmoly"),
        make_link("https://vidmoly.to/embed-b.html", "Vidmoly"),
        make_link("https://voe.sx/e/c", "VOE"),
        make_link("https://vidmoly.to/embed-a.html", "Vidmoly"),
    ]
    assert store.save_episode_links(episode.id, found) == {"Vidmoly": 2, "VOE": 1}
    series = store.get_or_create_series("Show", "Show")
    row = store.find_episode(series.id, 1, 1)
    assert row.status == EpisodeStatus.LINKS_FOUND
    assert row.processed_at is not None
    assert store.save_episode_links(episode.id, found) == {}
    assert store.count_episode_links(episode.id) == 3


def test_save_episode_links_for_missing_episode_stores_nothing(store):
    with pytest.raises(PersistenceFault):
        store.save_episode_links(9999, [make_link("https://vidmoly.to/embed-a.html")])
    assert store.count_episode_links(9999) == 0


def test_series_locks_do_not_accumulate(store):
    for n in range(5):
        seed_episode(store, f"Show {n}", 1, 1, [])
    assert len(store._locks) == 0
