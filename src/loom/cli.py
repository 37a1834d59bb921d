"""Command line entry point for loom."""

from __future__ import annotations

import copy
import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import Callable, Iterator, List, Optional

import typer
import yaml

from .changes.applier import StagedChange, sweep_temp_files
from .changes.extractor import extract_changes
from .config import DEFAULT_CONFIG_NAME, DEFAULT_CONFIG_TEMPLATE, LoggingSettings, LoomConfig, load_config
from .context.scanner import RepositoryScanner
from .errors import ConfigError, EmbeddingError, LoomError, ScanError
from .models import provider_from_settings
from .models.provider import ProviderCancelled, ProviderError
from .pipeline import Pipeline

APP_HELP = "Turn model responses into reviewed edits of a local source tree."
INPUT_TERMINATOR = ";;"
COMMAND_HELP = (
    "Type a request and finish it with ';;' on the end of a line.\n"
    ":help           show this message\n"
    ":clear-history  forget the conversation so far\n"
    ":exit           leave the session"
)

app = typer.Typer(help=APP_HELP)


def configure_logging(settings: LoggingSettings) -> None:
    level = getattr(logging, settings.level, logging.WARNING)
    kwargs = {"filename": settings.file} if settings.file else {}
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s", **kwargs)


def _load(root: Path, config: Optional[Path]) -> LoomConfig:
    try:
        return load_config(root, config)
    except ConfigError as error:
        typer.echo(f"Configuration error: {error}")
        raise typer.Exit(code=1) from error


def read_request(reader: Callable[[str], str] = input) -> str:
    """Read lines until one ends with ``;;`` and return the joined request."""
    lines: List[str] = []
    prompt = "> "
    while True:
        line = reader(prompt)
        prompt = ". "
        stripped = line.rstrip()
        if not lines and stripped.startswith(":"):
            return stripped
        if stripped.endswith(INPUT_TERMINATOR):
            lines.append(stripped[: -len(INPUT_TERMINATOR)])
            return "\n".join(lines).strip()
        lines.append(line)


class ConsolePresenter:
    """Streams model output to the terminal and asks for a decision per file."""

    def __init__(self) -> None:
        self.reviewing = False

    def on_delta(self, text: str) -> None:
        typer.echo(text, nl=False)

    def on_restart(self) -> None:
        typer.echo(typer.style("\n[stream interrupted, retrying]", fg=typer.colors.YELLOW))

    def review(self, change: StagedChange, diff: str) -> bool:
        typer.echo("")
        typer.echo(typer.style(f"--- {change.relative_path}", bold=True))
        if not diff:
            typer.echo("(no differences)")
        for line in diff.splitlines():
            if line.startswith("+") and not line.startswith("+++"):
                typer.echo(typer.style(line, fg=typer.colors.GREEN))
            elif line.startswith("-") and not line.startswith("---"):
                typer.echo(typer.style(line, fg=typer.colors.RED))
            else:
                typer.echo(line)
        self.reviewing = True
        try:
            return typer.confirm(f"Apply changes to {change.relative_path}?", default=False)
        except typer.Abort:
            # Ctrl-C or end of input at the prompt rejects this file only.
            typer.echo("")
            return False
        finally:
            self.reviewing = False


def interrupt_handler(
    cancel: threading.Event, presenter: ConsolePresenter
) -> Callable[[int, Optional[FrameType]], None]:
    """Build a SIGINT handler that cancels the in-flight request.

    The first interrupt sets ``cancel`` so the provider stops at its next
    chunk. A second interrupt, or one during a review prompt, raises
    ``KeyboardInterrupt`` as usual.
    """

    def handle(signum: int, frame: Optional[FrameType]) -> None:
        if presenter.reviewing or cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()

    return handle


@contextmanager
def _cancel_on_interrupt(cancel: threading.Event, presenter: ConsolePresenter) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, interrupt_handler(cancel, presenter))
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


@app.command()
def init(
    root: Path = typer.Option(Path("."), "--root", "-r", help="Project root."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration."),
) -> None:
    """Write a default configuration file to the project root."""
    target = root / DEFAULT_CONFIG_NAME
    if target.exists() and not force:
        typer.echo(f"{target} already exists; use --force to overwrite.")
        raise typer.Exit(code=1)
    target.write_text(yaml.safe_dump(copy.deepcopy(DEFAULT_CONFIG_TEMPLATE), sort_keys=False), encoding="utf-8")
    typer.echo(f"Wrote {target}")


@app.command()
def scan(
    root: Path = typer.Option(Path("."), "--root", "-r", help="Project root."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to the configuration file."),
) -> None:
    """List the files that would be sent as context."""
    settings = _load(root, config)
    try:
        records = RepositoryScanner(settings.root, ignore_file=settings.context.ignore_file).scan()
    except ScanError as error:
        typer.echo(f"Scan failed: {error}")
        raise typer.Exit(code=1) from error
    for record in records:
        typer.echo(f"{record.relative_path}\t{len(record.raw_content)}\t{len(record.compressed_content)}")
    typer.echo(f"{len(records)} file(s)")


@app.command()
def extract(
    response_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="File holding a saved model response."
    ),
) -> None:
    """Print the changes parsed from a saved model response."""
    changes = extract_changes(response_file.read_text(encoding="utf-8"))
    if not changes:
        typer.echo("No changes found.")
        return
    for change in changes:
        typer.echo(f"{change.relative_path} ({len(change.code.splitlines())} lines)")


@app.command()
def sweep(root: Path = typer.Option(Path("."), "--root", "-r", help="Project root.")) -> None:
    """Delete staged ``.tmp`` files left behind by an interrupted session."""
    removed = sweep_temp_files(root.resolve())
    typer.echo(f"Removed {len(removed)} temp file(s).")


@app.command()
def code(
    root: Path = typer.Option(Path("."), "--root", "-r", help="Project root."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to the configuration file."),
) -> None:
    """Start an interactive editing session."""
    settings = _load(root, config)
    configure_logging(settings.logging)
    try:
        provider = provider_from_settings(settings.provider)
    except ConfigError as error:
        typer.echo(f"Failed to initialise provider: {error}")
        raise typer.Exit(code=1) from error

    pipeline = Pipeline(settings, provider)
    presenter = ConsolePresenter()
    typer.echo(f"loom session for {settings.root} ({provider.name}:{provider.chat_model})")
    typer.echo(COMMAND_HELP)
    try:
        while True:
            try:
                request = read_request()
            except (EOFError, KeyboardInterrupt):
                typer.echo("")
                break
            if request == ":exit":
                break
            if request == ":help":
                typer.echo(COMMAND_HELP)
                continue
            if request == ":clear-history":
                pipeline.session.clear_history()
                typer.echo("History cleared.")
                continue
            if not request or request.startswith(":"):
                if request:
                    typer.echo(f"Unknown command {request}; type :help.")
                continue
            _run_turn(pipeline, presenter, request)
    finally:
        pipeline.shutdown()


def _run_turn(pipeline: Pipeline, presenter: ConsolePresenter, request: str) -> None:
    cancel = threading.Event()
    try:
        with _cancel_on_interrupt(cancel, presenter):
            result = pipeline.run_turn(request, presenter, cancel=cancel)
    except (KeyboardInterrupt, ProviderCancelled):
        typer.echo("\nRequest cancelled.")
        return
    except (ScanError, EmbeddingError) as error:
        typer.echo(f"\n{error}")
        failures = error.details.get("failures")
        if isinstance(failures, dict):
            for path, message in failures.items():
                typer.echo(f"  {path}: {message}")
        return
    except (ProviderError, LoomError) as error:
        typer.echo(f"\n{error}")
        return

    typer.echo("")
    if not result.changes:
        typer.echo("No changes to apply.")
    else:
        report = result.report
        typer.echo(
            f"Applied {len(report.committed)}, rejected {len(report.rejected)}, failed {len(report.failed)}."
        )
    for message in result.errors:
        typer.echo(f"! {message}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
