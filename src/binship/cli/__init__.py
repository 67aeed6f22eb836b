"""
CLI layer for binship.

Typer application with one command per pipeline entry point. All pipeline
logic lives in ``binship.release``; this package handles terminal
transport only: argument parsing, coloured output and exit codes.

Entry point::

    binship --help
"""

from binship.cli.app import app

__all__ = ["app"]
