"""
Link discovery: the protocol every host capability implements, the value
types it exchanges with the traversal engine, and a registry keyed by host.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from ..db.codes import LinkType, Quality


@dataclass(frozen=True)
class DiscoveredLink:
    url: str
    host_name: str
    type: LinkType = LinkType.UNKNOWN
    quality: Quality = Quality.UNKNOWN


@dataclass(frozen=True)
class EpisodeContext:
    series_name: str
    season_number: int
    episode_number: int
    episode_id: Optional[int] = None


@runtime_checkable
class LinkDiscovery(Protocol):
    name: str

    def can_handle(self, url: str) -> bool: ...

    def extract_links(self, episode_url: str, context: EpisodeContext) -> list[DiscoveredLink]: ...

    def validate_link(self, url: str) -> bool: ...

    def initialize(self) -> bool: ...

    def cleanup(self) -> None: ...


def _key(name: str) -> str:
    return (name or "").strip().lower()


class DiscoveryRegistry:
    def __init__(self, capabilities=()):
        self._items: dict[str, LinkDiscovery] = {}
        for cap in capabilities:
            self.register(cap)

    def register(self, capability: LinkDiscovery) -> None:
        key = _key(capability.name)
        if not key:
            raise ValueError("capability name must not be empty")
        self._items[key] = capability

    def get(self, name: str) -> LinkDiscovery | None:
        return self._items.get(_key(name))

    def names(self) -> list[str]:
        return [c.name for c in self._items.values()]

    def find_for_url(self, url: str, preferred: str = "auto") -> LinkDiscovery | None:
        """Preferred capability if it can handle `url`, else the first one that can."""
        if preferred and _key(preferred) != "auto":
            cap = self.get(preferred)
            if cap is not None and cap.can_handle(url):
                return cap
        for cap in self._items.values():
            if cap.can_handle(url):
                return cap
        return None

    def for_host(self, host_name: str) -> LinkDiscovery | None:
        return self.get(host_name)

    def __iter__(self):
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)
