"""
Integer codes for the catalog's status enums.

Rows store small integers; the mapping below is the only place they are
defined. Bump ENUM_CODES_VERSION whenever a table changes and add a migration
that rewrites existing rows.
"""
from __future__ import annotations
from enum import Enum
from typing import Type

from sqlalchemy import Integer
from sqlalchemy.types import TypeDecorator

ENUM_CODES_VERSION = 1


class MediaStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EpisodeStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    LINKS_FOUND = "links_found"
    NO_LINKS_FOUND = "no_links_found"
    FAILED = "failed"
    SKIPPED = "skipped"


class LinkType(str, Enum):
    UNKNOWN = "unknown"
    M3U8 = "m3u8"
    MP4 = "mp4"
    EMBED = "embed"
    DIRECT = "direct"


class Quality(str, Enum):
    UNKNOWN = "unknown"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ULTRA = "ultra"


class DownloadStatus(str, Enum):
    NOT_STARTED = "not_started"
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CODES: dict[type, dict[Enum, int]] = {
    MediaStatus: {
        MediaStatus.PENDING: 0,
        MediaStatus.PROCESSING: 1,
        MediaStatus.COMPLETED: 2,
        MediaStatus.FAILED: 3,
        MediaStatus.CANCELLED: 4,
    },
    EpisodeStatus: {
        EpisodeStatus.PENDING: 0,
        EpisodeStatus.PROCESSING: 1,
        EpisodeStatus.LINKS_FOUND: 2,
        EpisodeStatus.NO_LINKS_FOUND: 3,
        EpisodeStatus.FAILED: 4,
        EpisodeStatus.SKIPPED: 5,
    },
    LinkType: {
        LinkType.UNKNOWN: 0,
        LinkType.M3U8: 1,
        LinkType.MP4: 2,
        LinkType.EMBED: 3,
        LinkType.DIRECT: 4,
    },
    Quality: {
        Quality.UNKNOWN: 0,
        Quality.LOW: 1,
        Quality.MEDIUM: 2,
        Quality.HIGH: 3,
        Quality.ULTRA: 4,
    },
    DownloadStatus: {
        DownloadStatus.NOT_STARTED: 0,
        DownloadStatus.QUEUED: 1,
        DownloadStatus.DOWNLOADING: 2,
        DownloadStatus.COMPLETED: 3,
        DownloadStatus.FAILED: 4,
        DownloadStatus.CANCELLED: 5,
    },
}


def encode(member: Enum) -> int:
    return CODES[type(member)][member]


def decode(enum_cls: Type[Enum], code: int) -> Enum:
    for member, value in CODES[enum_cls].items():
        if value == code:
            return member
    raise ValueError(f"unknown {enum_cls.__name__} code {code!r} (codes v{ENUM_CODES_VERSION})")


class CodedEnum(TypeDecorator):
    """Stores a str Enum as its integer code; unknown codes fail on read."""

    impl = Integer
    cache_ok = True

    def __init__(self, enum_cls: Type[Enum], *args, **kwargs):
        if enum_cls not in CODES:
            raise TypeError(f"no code table for {enum_cls.__name__}")
        self.enum_cls = enum_cls
        super().__init__(*args, **kwargs)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, self.enum_cls):
            value = self.enum_cls(value)
        return encode(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decode(self.enum_cls, int(value))
