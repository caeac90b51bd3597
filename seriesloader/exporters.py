from __future__ import annotations
from pathlib import Path
from datetime import datetime
import csv
import json
import shlex

from .db.codes import DownloadStatus
from .downloader import target_path
from .urls import clean_name

FORMATS = ("json", "csv", "batch")

CSV_FIELDS = [
    "series", "season", "episode", "url", "host", "type", "quality",
    "is_valid", "download_status", "download_path", "found_at",
]


def default_export_name(series_name: str | None, fmt: str, now: datetime | None = None) -> str:
    """`<series>_<yyyyMMdd_HHmmss>.<ext>`, or `ytdlp_links_...` when exporting everything."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    base = clean_name(series_name) if series_name else "ytdlp_links"
    ext = "sh" if fmt == "batch" else fmt
    return f"{base}_{stamp}.{ext}"


def _as_tree(links) -> list[dict]:
    """Group links (ordered by series, season, episode) into the nested document."""
    tree: dict[int, dict] = {}
    for link in links:
        ep = link.episode
        season = ep.season
        series = season.series
        s = tree.setdefault(series.id, {
            "name": series.name,
            "url": series.original_url,
            "status": series.status.value,
            "seasons": {},
        })
        sn = s["seasons"].setdefault(season.number, {"number": season.number, "episodes": {}})
        e = sn["episodes"].setdefault(ep.number, {
            "number": ep.number,
            "url": ep.original_url,
            "status": ep.status.value,
            "links": [],
        })
        e["links"].append({
            "url": link.url,
            "host": link.host_name,
            "type": link.type.value,
            "quality": link.quality.value,
            "is_valid": link.is_valid,
            "download_status": link.download_status.value,
            "download_path": link.download_path,
        })
    out = []
    for s in tree.values():
        seasons = []
        for sn in s["seasons"].values():
            sn["episodes"] = list(sn["episodes"].values())
            seasons.append(sn)
        s["seasons"] = seasons
        out.append(s)
    return out


def _write_json(links, target: Path) -> None:
    data = {"exported_at": datetime.utcnow().isoformat(), "series": _as_tree(links)}
    target.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _write_csv(links, target: Path) -> None:
    with open(target, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        w.writeheader()
        for link in links:
            ep = link.episode
            w.writerow({
                "series": ep.season.series.name,
                "season": ep.season.number,
                "episode": ep.number,
                "url": link.url,
                "host": link.host_name,
                "type": link.type.value,
                "quality": link.quality.value,
                "is_valid": link.is_valid,
                "download_status": link.download_status.value,
                "download_path": link.download_path or "",
                "found_at": link.found_at.isoformat() if link.found_at else "",
            })


def _write_batch(links, target: Path, output_dir: str, quality: str) -> None:
    lines = ["#!/bin/sh", "# yt-dlp batch generated by seriesloader", ""]
    for link in links:
        if not link.is_valid or link.download_status == DownloadStatus.COMPLETED:
            continue
        ep = link.episode
        out = target_path(output_dir, ep.season.series.name, ep.season.number, ep.number)
        template = str(out.with_suffix("")) + ".%(ext)s"
        cmd = [
            "yt-dlp", link.url,
            "--output", template,
            "--format", quality,
            "--merge-output-format", "mp4",
            "--no-playlist",
        ]
        lines.append(" ".join(shlex.quote(c) for c in cmd))
    target.write_text("\n".join(lines) + "\n", encoding="utf-8")
    target.chmod(0o755)


def export_links(links, fmt: str, target: str | Path,
                 output_dir: str = "./Downloads", quality: str = "best") -> Path:
    """Write `links` (with episode.season.series loaded) to `target`; returns the path."""
    fmt = fmt.lower()
    if fmt not in FORMATS:
        raise ValueError(f"unsupported export format {fmt!r} (choose from {', '.join(FORMATS)})")
    path = Path(target)
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "json":
        _write_json(links, path)
    elif fmt == "csv":
        _write_csv(links, path)
    else:
        _write_batch(links, path, output_dir, quality)
    return path
