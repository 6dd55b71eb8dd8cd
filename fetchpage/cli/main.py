#!/usr/bin/env python3
"""Command-line entry point for fetchpage using Typer.

One invocation fetches one URL and prints the rendered text artifact.
"""

import asyncio
import logging
from enum import IntEnum
from pathlib import Path
from typing import Annotated, Optional

import typer

from .. import __version__
from ..fetch.config import FetchConfigManager
from ..fetch.models import ResultStatus
from ..fetch.orchestrator import FetchOrchestrator, resolve_force_method
from ..fetch.progress import ProgressReporter


class ExitCode(IntEnum):
    """CLI exit codes for scripting."""
    SUCCESS = 0         # Content retrieved
    LOGIN_REQUIRED = 1  # Page is behind a login wall
    FETCH_ERROR = 2     # Every attempt failed
    CONFIG_ERROR = 3    # Configuration or argument error


app = typer.Typer(
    name="fetchpage",
    help="Fetch a web page as Markdown, reusing cookies captured in your browser",
    add_completion=False,
)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def echo_progress(token, progress: float, total: Optional[float], message: Optional[str]) -> None:
    typer.echo(f"[{progress:.0f}/{total:.0f}] {message}", err=True)


@app.callback()
def main():
    """
    fetchpage - fetch readable page content with automatic cookie support.

    Tries a plain HTTP request first and falls back to browser rendering
    when the content looks incomplete.
    """
    pass


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"fetchpage v{__version__}")


@app.command()
def fetch(
    url: Annotated[
        str,
        typer.Argument(help="URL to fetch")
    ],

    wait_for: Annotated[
        Optional[str],
        typer.Option("--wait-for", "-w", help="CSS selector to wait for and extract (uses the browser)")
    ] = None,

    headful: Annotated[
        bool,
        typer.Option("--headful", help="Show the browser window")
    ] = False,

    force_method: Annotated[
        Optional[str],
        typer.Option("--force-method", "-m", help="Skip the decision tree: http, browser or spa")
    ] = None,

    timeout: Annotated[
        Optional[int],
        typer.Option("--timeout", "-t", help="Navigation timeout in milliseconds")
    ] = None,

    skip_cookies: Annotated[
        bool,
        typer.Option("--skip-cookies", help="Do not load captured cookies")
    ] = False,

    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to fetchpage YAML configuration")
    ] = None,

    no_save: Annotated[
        bool,
        typer.Option("--no-save", help="Do not write a Markdown file to the pages directory")
    ] = False,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose logging and progress output")
    ] = False,
):
    """
    Fetch a page and print it as Markdown.

    Examples:

        # Automatic strategy selection
        fetchpage fetch https://example.com/article

        # Extract one element from a rendered page
        fetchpage fetch --wait-for "#content" https://example.com/app

        # HTTP only, without cookies
        fetchpage fetch --force-method http --skip-cookies https://example.com
    """
    configure_logging(verbose)

    try:
        resolve_force_method(force_method)
    except ValueError:
        typer.echo(f"❌ Unsupported --force-method {force_method!r}: use http, browser or spa", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    if config_file and not config_file.exists():
        typer.echo(f"❌ Configuration file not found: {config_file}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    try:
        config = FetchConfigManager(config_file).load_config()
    except Exception as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    orchestrator = FetchOrchestrator(config)
    reporter = ProgressReporter(token=url, sink=echo_progress) if verbose else ProgressReporter()

    try:
        document = asyncio.run(orchestrator.run(
            url,
            wait_for=wait_for,
            headless=False if headful else None,
            force_method=force_method,
            timeout=timeout,
            skip_cookies=skip_cookies,
            progress=reporter,
            save_artifact=False if no_save else None,
        ))
    except KeyboardInterrupt:
        typer.echo("❌ Operation interrupted by user", err=True)
        raise typer.Exit(code=ExitCode.FETCH_ERROR.value)

    typer.echo(document.render())

    if document.status == ResultStatus.LOGIN_REQUIRED:
        raise typer.Exit(code=ExitCode.LOGIN_REQUIRED.value)
    if document.status == ResultStatus.ERROR:
        raise typer.Exit(code=ExitCode.FETCH_ERROR.value)


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
