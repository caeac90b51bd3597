# seriesloader/__main__.py
import sys

from .cli import app


def cli(argv=None):
    """Launcher so `python3 -m seriesloader [args]` behaves like the console script."""
    return app(args=argv, prog_name="seriesloader")


if __name__ == "__main__":
    sys.exit(cli())
