"""
URL arithmetic for episode pages and the name cleaning used for catalog keys
and download paths.
"""
from __future__ import annotations
import re
from urllib.parse import urlparse, unquote

from unidecode import unidecode

SEASON_PATTERNS = [
    re.compile(r"/staffel-(\d+)(?=/|$)", re.I),
    re.compile(r"/season-(\d+)(?=/|$)", re.I),
    re.compile(r"/s(\d+)(?=/|$)", re.I),
    re.compile(r"[?&]season=(\d+)", re.I),
    re.compile(r"[?&]staffel=(\d+)", re.I),
]

EPISODE_PATTERNS = [
    re.compile(r"/episode-(\d+)", re.I),
    re.compile(r"/ep-(\d+)", re.I),
    re.compile(r"/e(\d+)(?=/|$|\?)", re.I),
    re.compile(r"[?&]episode=(\d+)", re.I),
    re.compile(r"[?&]ep=(\d+)", re.I),
]

_SERIES_MARKERS = {"stream", "serie", "series"}


def _first_number(patterns, url: str) -> int | None:
    for rx in patterns:
        m = rx.search(url)
        if m:
            return int(m.group(1))
    return None


def season_from_url(url: str) -> int | None:
    """Season number encoded in the URL, or None when the URL carries none."""
    return _first_number(SEASON_PATTERNS, url)


def episode_from_url(url: str) -> int | None:
    return _first_number(EPISODE_PATTERNS, url)


def with_episode(url: str, number: int) -> str | None:
    """Rewrite the episode number in `url`; None when no episode marker is found."""
    for rx in EPISODE_PATTERNS:
        m = rx.search(url)
        if m:
            start, end = m.span(1)
            return url[:start] + str(number) + url[end:]
    return None


def increment_episode(url: str) -> str | None:
    current = episode_from_url(url)
    if current is None:
        return None
    return with_episode(url, current + 1)


def clean_series_name(raw: str) -> str:
    return unquote(raw).strip("/").replace("-", " ").replace("_", " ").strip()


def series_name_from_url(url: str) -> str:
    """
    Series name from the path segment after /stream/, /serie/ or /series/.
    Falls back to the bare host name.
    """
    parsed = urlparse(url)
    segments = [s for s in parsed.path.split("/") if s]
    for i, seg in enumerate(segments[:-1]):
        if seg.lower() in _SERIES_MARKERS and segments[i + 1].lower() not in _SERIES_MARKERS:
            name = clean_series_name(segments[i + 1])
            if name:
                return name
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    host = host.rsplit(".", 1)[0] if "." in host else host
    return host or "Unknown Series"


_INVALID = r"[\\/:*?\"<>|\x00-\x1f]+"


def clean_name(name: str) -> str:
    """Filesystem-safe catalog key: invalid characters collapse to '_'."""
    parts = [p for p in re.split(_INVALID, name) if p]
    return "_".join(parts).strip()


def directory_name(name: str) -> str:
    s = unidecode(name)
    s = re.sub(_INVALID, "", s)
    s = re.sub(r"\s+", " ", s).strip().rstrip(".")
    return s or "_"


def file_stem(series: str, season: int, episode: int) -> str:
    """`<Series>S<season>F<episode:02d>` with spaces and dashes removed from the name."""
    s = unidecode(series)
    s = re.sub(_INVALID, "", s).strip()
    s = s.replace(" ", "").replace("-", "")
    return f"{s or '_'}S{season}F{episode:02d}"
