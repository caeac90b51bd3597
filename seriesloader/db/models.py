from __future__ import annotations
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String, Integer, DateTime, ForeignKey, UniqueConstraint, Boolean, Index, Text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .codes import CodedEnum, MediaStatus, EpisodeStatus, LinkType, Quality, DownloadStatus


class Base(DeclarativeBase):
    pass


class Series(Base):
    __tablename__ = "series"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(500), index=True)
    clean_name: Mapped[str] = mapped_column(String(500), index=True)
    original_url: Mapped[Optional[str]] = mapped_column(String(2000))
    status: Mapped[MediaStatus] = mapped_column(
        CodedEnum(MediaStatus), default=MediaStatus.PENDING, index=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    seasons: Mapped[list["Season"]] = relationship(
        back_populates="series", order_by="Season.number",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def total_seasons(self) -> int:
        return len(self.seasons)

    @property
    def total_episodes(self) -> int:
        return sum(len(s.episodes) for s in self.seasons)

    @property
    def found_links(self) -> int:
        return sum(len(e.links) for s in self.seasons for e in s.episodes)

    def update_status(self, status: MediaStatus, error: str | None = None) -> None:
        self.status = status
        self.error_message = error
        self.updated_at = datetime.utcnow()


class Season(Base):
    __tablename__ = "seasons"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    series_id: Mapped[int] = mapped_column(ForeignKey("series.id", ondelete="CASCADE"), index=True)
    number: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    series: Mapped[Series] = relationship(back_populates="seasons")
    episodes: Mapped[list["Episode"]] = relationship(
        back_populates="season", order_by="Episode.number",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    __table_args__ = (UniqueConstraint("series_id", "number", name="uq_season_per_series"),)


class Episode(Base):
    __tablename__ = "episodes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), index=True)
    number: Mapped[int] = mapped_column(Integer)
    title: Mapped[Optional[str]] = mapped_column(String(500))
    original_url: Mapped[Optional[str]] = mapped_column(String(2000))
    status: Mapped[EpisodeStatus] = mapped_column(
        CodedEnum(EpisodeStatus), default=EpisodeStatus.PENDING, index=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    season: Mapped[Season] = relationship(back_populates="episodes")
    links: Mapped[list["DownloadableLink"]] = relationship(
        back_populates="episode", order_by="DownloadableLink.id",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    __table_args__ = (UniqueConstraint("season_id", "number", name="uq_episode_per_season"),)

    def update_status(self, status: EpisodeStatus, error: str | None = None) -> None:
        self.status = status
        self.error_message = error
        self.updated_at = datetime.utcnow()
        if status == EpisodeStatus.LINKS_FOUND:
            self.processed_at = datetime.utcnow()


class DownloadableLink(Base):
    __tablename__ = "links"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    episode_id: Mapped[int] = mapped_column(ForeignKey("episodes.id", ondelete="CASCADE"), index=True)
    url: Mapped[str] = mapped_column(String(2000))
    host_name: Mapped[str] = mapped_column(String(100), index=True)
    type: Mapped[LinkType] = mapped_column(CodedEnum(LinkType), default=LinkType.UNKNOWN)
    quality: Mapped[Quality] = mapped_column(CodedEnum(Quality), default=Quality.UNKNOWN)
    # Validation
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    is_tested: Mapped[bool] = mapped_column(Boolean, default=False)
    found_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_validated: Mapped[Optional[datetime]] = mapped_column(DateTime)
    validation_error: Mapped[Optional[str]] = mapped_column(Text)
    # Download tracking
    download_status: Mapped[DownloadStatus] = mapped_column(
        CodedEnum(DownloadStatus), default=DownloadStatus.NOT_STARTED
    )
    download_started: Mapped[Optional[datetime]] = mapped_column(DateTime)
    download_completed: Mapped[Optional[datetime]] = mapped_column(DateTime)
    download_path: Mapped[Optional[str]] = mapped_column(String(2000))
    download_error: Mapped[Optional[str]] = mapped_column(Text)
    episode: Mapped[Episode] = relationship(back_populates="links")

    __table_args__ = (
        UniqueConstraint("episode_id", "url", name="uq_link_per_episode_url"),
        Index("ix_link_download_state", "is_valid", "download_status"),
    )

    def update_download_status(
        self, status: DownloadStatus, error: str | None = None, path: str | None = None
    ) -> None:
        self.download_status = status
        self.download_error = error
        if path is not None:
            self.download_path = path
        if status == DownloadStatus.DOWNLOADING:
            self.download_started = datetime.utcnow()
        elif status == DownloadStatus.COMPLETED:
            self.download_completed = datetime.utcnow()

    def mark_validated(self, is_valid: bool, error: str | None = None) -> None:
        self.is_valid = is_valid
        self.is_tested = True
        self.last_validated = datetime.utcnow()
        self.validation_error = error
