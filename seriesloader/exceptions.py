"""
Exception taxonomy for discovery, persistence and download failures.

A run that finds no links is an outcome (EpisodeStatus.NO_LINKS_FOUND), not an
exception, so it has no class here.
"""


class SeriesLoaderError(Exception):
    """Base exception for all application-specific errors."""


class DiscoveryFault(SeriesLoaderError):
    """Raised when a discovery capability cannot render or navigate a page."""


class PersistenceFault(SeriesLoaderError):
    """Raised when the catalog database fails unexpectedly."""

    kind = "persistence"


class StoreUnavailable(PersistenceFault):
    """Raised when the catalog database cannot be opened or initialized."""


class DownloadFault(SeriesLoaderError):
    """Base for per-link download failures. `kind` tags the failure in results."""

    kind = "download"


class DownloadProcessFault(DownloadFault):
    """The external downloader did not finish successfully."""

    kind = "process"


class DownloaderExitError(DownloadProcessFault):
    kind = "exit"

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        first_line = stderr.strip().splitlines()[0] if stderr.strip() else ""
        msg = f"yt-dlp exited with code {returncode}"
        if first_line:
            msg += f": {first_line}"
        super().__init__(msg)


class DownloaderStartError(DownloadProcessFault):
    kind = "start"


class DownloaderTimeout(DownloadProcessFault):
    kind = "timeout"


class DownloadOutputMissing(DownloadFault):
    """The downloader reported success but no output file matched."""

    kind = "output_missing"
