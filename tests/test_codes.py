"""Tests for db/codes.py: integer codes of the status enums."""

import pytest

from seriesloader.db.codes import (
    CodedEnum, DownloadStatus, EpisodeStatus, LinkType, MediaStatus, Quality, decode, encode,
)


def test_codes_are_stable():
    """Stored integers must never change for existing members."""
    assert [encode(m) for m in MediaStatus] == [0, 1, 2, 3, 4]
    assert encode(EpisodeStatus.SKIPPED) == 5
    assert encode(LinkType.EMBED) == 3
    assert encode(Quality.ULTRA) == 4
    assert encode(DownloadStatus.CANCELLED) == 5


def test_every_member_has_a_unique_code():
    for enum_cls in (MediaStatus, EpisodeStatus, LinkType, Quality, DownloadStatus):
        codes = [encode(m) for m in enum_cls]
        assert len(codes) == len(set(codes))
        assert all(decode(enum_cls, encode(m)) is m for m in enum_cls)


def test_unknown_code_is_rejected_on_read():
    col = CodedEnum(DownloadStatus)
    with pytest.raises(ValueError, match="unknown DownloadStatus code 42"):
        col.process_result_value(42, None)


def test_bind_accepts_values_and_members():
    col = CodedEnum(EpisodeStatus)
    assert col.process_bind_param(EpisodeStatus.LINKS_FOUND, None) == 2
    assert col.process_bind_param("no_links_found", None) == 3
    assert col.process_bind_param(None, None) is None
    with pytest.raises(ValueError):
        col.process_bind_param("bogus", None)
