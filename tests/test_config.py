"""Tests for config.py: YAML settings with SERIESLOADER_ env overrides."""

import pytest

from seriesloader.config import load_config


def test_defaults(tmp_path):
    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg.download_dir == "./Downloads"
    assert cfg.max_concurrent_downloads == 2
    assert cfg.download_timeout_minutes == 30
    assert cfg.delay_between_episodes_ms == 500
    assert cfg.delay_after_error_ms == 2000
    assert cfg.max_consecutive_errors == 5
    cfg.validate()


def test_yaml_then_env(tmp_path, monkeypatch):
    """Env vars win over the YAML file, which wins over defaults."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "max-concurrent-downloads: 4\n"
        "download_dir: /media/series\n"
        "browser_headless: false\n"
        "browser_arguments: ['--lang=de']\n"
        "unknown_key: 1\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("SERIESLOADER_MAX_DOWNLOADS", "6")
    monkeypatch.setenv("SERIESLOADER_HEADLESS", "yes")

    cfg = load_config(path)
    assert cfg.max_concurrent_downloads == 6
    assert cfg.download_dir == "/media/series"
    assert cfg.browser_headless is True
    assert cfg.browser_arguments == ["--lang=de"]


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "other.yaml"
    path.write_text("log_level: DEBUG\n", encoding="utf-8")
    monkeypatch.setenv("SERIESLOADER_CONFIG", str(path))
    assert load_config().log_level == "DEBUG"


def test_browser_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("SERIESLOADER_PROXY", "socks5://127.0.0.1:9050")
    monkeypatch.setenv("SERIESLOADER_PAGE_TIMEOUT", "25")
    b = load_config(tmp_path / "missing.yaml").browser()
    assert b.proxy == "socks5://127.0.0.1:9050"
    assert b.page_load_timeout == 25.0
    assert b.headless is True


@pytest.mark.parametrize("field,value", [
    ("max_concurrent_downloads", 0),
    ("download_timeout_minutes", -1),
    ("delay_after_error_ms", -5),
])
def test_validate_rejects_bad_values(tmp_path, field, value):
    cfg = load_config(tmp_path / "missing.yaml")
    setattr(cfg, field, value)
    with pytest.raises(ValueError):
        cfg.validate()
