"""Per-user locations: catalog database, rotating logs, config and cache."""
from __future__ import annotations
from pathlib import Path
from platformdirs import PlatformDirs

APP = "seriesloader"

DB_FILENAME = "seriesloader.sqlite3"
LOG_FILENAME = "seriesloader.log"


def _platform() -> PlatformDirs:
    return PlatformDirs(appname=APP, appauthor=False)


def get_dirs(create: bool = True) -> dict[str, Path]:
    d = _platform()
    paths = {
        "data": Path(d.user_data_dir),     # catalog DB
        "config": Path(d.user_config_dir),
        "cache": Path(d.user_cache_dir),
        "logs": Path(d.user_log_dir),
    }
    if create:
        for p in paths.values():
            p.mkdir(parents=True, exist_ok=True)
    return paths


def db_file() -> Path:
    return get_dirs()["data"] / DB_FILENAME


def log_file() -> Path:
    return get_dirs()["logs"] / LOG_FILENAME
