"""
AppContext: the objects one CLI invocation works with, built in one place.
"""
from __future__ import annotations
from dataclasses import dataclass

import structlog

from .config import Config, load_config
from .db.session import get_engine, init_db
from .db.store import CatalogStore
from .discovery import DiscoveryRegistry
from .discovery.vidmoly import VidmolyDiscovery

log = structlog.get_logger()


def build_registry(cfg: Config) -> DiscoveryRegistry:
    return DiscoveryRegistry([VidmolyDiscovery(cfg.browser())])


@dataclass
class AppContext:
    config: Config
    engine: object
    store: CatalogStore
    registry: DiscoveryRegistry

    def close(self) -> None:
        self.engine.dispose()


def open_context(cfg: Config | None = None, create_schema: bool = True) -> AppContext:
    """Open the catalog (creating tables when missing) and register capabilities."""
    cfg = cfg or load_config()
    cfg.validate()
    engine = get_engine(cfg.db_url or None)
    if create_schema:
        init_db(engine)
    log.debug("context_open", db=str(engine.url))
    return AppContext(config=cfg, engine=engine, store=CatalogStore(engine), registry=build_registry(cfg))
