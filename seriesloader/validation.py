"""
validation: Re-check stored links against their host capability.

Links are grouped in batches only for progress reporting; each check writes
its own row.
"""
from __future__ import annotations
from dataclasses import dataclass

import structlog

from .db.store import CatalogStore
from .discovery import DiscoveryRegistry

log = structlog.get_logger()


@dataclass
class ValidationReport:
    checked: int = 0
    valid: int = 0
    invalid: int = 0
    skipped: int = 0


def validate_links(
    store: CatalogStore,
    registry: DiscoveryRegistry,
    series_name: str | None = None,
    force: bool = False,
    batch_size: int = 50,
) -> ValidationReport:
    if batch_size < 1:
        raise ValueError("batch_size must be greater than 0")
    report = ValidationReport()
    links = store.get_links_for_validation(series_name, force=force)
    log.info("validation_start", links=len(links), series=series_name, force=force)

    for start in range(0, len(links), batch_size):
        for link in links[start:start + batch_size]:
            capability = registry.for_host(link.host_name)
            if capability is None:
                report.skipped += 1
                log.debug("validation_no_capability", link_id=link.id, host=link.host_name)
                continue
            error = None
            try:
                ok = bool(capability.validate_link(link.url))
            except Exception as e:
                ok = False
                error = str(e)
                log.warning("validation_error", link_id=link.id, url=link.url, error=error)
            store.mark_link_validated(link.id, ok, error)
            report.checked += 1
            if ok:
                report.valid += 1
            else:
                report.invalid += 1
        log.info("validation_progress", done=min(start + batch_size, len(links)), total=len(links))

    log.info("validation_done", checked=report.checked, valid=report.valid,
             invalid=report.invalid, skipped=report.skipped)
    return report
