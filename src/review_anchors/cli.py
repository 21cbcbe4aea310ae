"""CLI entry point for review annotations.

Exit codes:
    0: Success
    1: Input/validation error
    2: Storage or environment error
"""

import contextlib
import json
import sys
from collections.abc import Generator
from pathlib import Path
from typing import NoReturn

import click

from review_anchors import __version__
from review_anchors.config import DEFAULT_CONTEXT_SIZE, DEFAULT_CONTEXT_THRESHOLD, MatchingConfig
from review_anchors.fuzzy import compute_session_key, split_lines
from review_anchors.locking import StoreLockTimeout
from review_anchors.logging import get_logger, init_logger
from review_anchors.manager import AnnotationManager, AnnotationNotFound
from review_anchors.models import Annotation
from review_anchors.providers import (
    ContentProvider,
    GitRevisionProvider,
    ProviderError,
    WorkingTreeProvider,
    detect_current_branch,
    find_project_root,
    to_relative_path,
)
from review_anchors.storage import JsonFileStore

DEFAULT_STORE = Path(".review") / "annotations.json"


def parse_line_range(line_range: str) -> tuple[int, int]:
    """
    Parse "START:END" (or a single "LINE") into a 1-indexed inclusive range.

    Raises:
        ValueError: If the format is invalid or the range is inverted
    """
    parts = line_range.split(":")
    if len(parts) == 1:
        parts = [parts[0], parts[0]]
    if len(parts) != 2:
        raise ValueError(
            f"Invalid line range format: {line_range}\nExpected format: START:END (e.g., 10:15)"
        )
    try:
        start, end = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(
            f"Invalid line range: {line_range}\nLine numbers must be integers (e.g., -L 10:15)"
        ) from None
    if start < 1 or end < start:
        raise ValueError(f"Invalid line range: {line_range} (need 1 <= START <= END)")
    return start, end


def _fail(message: str, code: int) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


@contextlib.contextmanager
def _storage_errors() -> Generator[None, None, None]:
    """Map store and provider failures to exit code 2."""
    try:
        yield
    except StoreLockTimeout as e:
        _fail(str(e), 2)
    except ProviderError as e:
        _fail(str(e), 2)
    except (ValueError, OSError) as e:
        get_logger().debug("Storage failure", error=repr(e))
        _fail(str(e), 2)


def _project_root(ctx: click.Context) -> Path:
    try:
        return find_project_root()
    except ValueError as e:
        if ctx.obj["store_path"] is None:
            _fail(str(e), 2)
        return Path.cwd().resolve()


def _open_manager(ctx: click.Context) -> tuple[AnnotationManager, Path]:
    project_root = _project_root(ctx)
    store_path = ctx.obj["store_path"] or project_root / DEFAULT_STORE
    return AnnotationManager(JsonFileStore(store_path), ctx.obj["config"]), project_root


def _relative(path: Path, project_root: Path) -> str:
    try:
        return to_relative_path(path.resolve(), project_root)
    except ValueError as e:
        _fail(str(e), 1)


def _summary(annotation: Annotation, label: str) -> str:
    first_line = annotation.text.splitlines()[0] if annotation.text else ""
    return (
        f"{annotation.id}  {annotation.file_path}:{annotation.start_line}-{annotation.end_line}"
        f"  [{label}]  {first_line}"
    )


@click.group()
@click.version_option(version=__version__, prog_name="review-anchors")
@click.option(
    "--store",
    "store_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Annotation store file (defaults to <project root>/{DEFAULT_STORE.as_posix()})",
)
@click.option(
    "--context-size",
    type=click.IntRange(min=0),
    default=DEFAULT_CONTEXT_SIZE,
    show_default=True,
    help="Context lines captured on each side of new annotations",
)
@click.option(
    "--threshold",
    type=click.FloatRange(min=0.0, max=1.0, min_open=True),
    default=DEFAULT_CONTEXT_THRESHOLD,
    show_default=True,
    help="Fraction of context lines that must match to relocate an annotation",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(
    ctx: click.Context,
    store_path: Path | None,
    context_size: int,
    threshold: float,
    verbose: bool,
):
    """Review comments anchored to line ranges that follow file edits."""
    init_logger(verbose=verbose)
    ctx.ensure_object(dict)
    ctx.obj["store_path"] = store_path
    ctx.obj["config"] = MatchingConfig(context_size=context_size, context_threshold=threshold)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-L",
    "--lines",
    "line_range",
    required=True,
    metavar="START:END",
    help="Line range to anchor the annotation (e.g., -L 10:15)",
)
@click.option("--base", "base_branch", default="", help="Base branch label (display only)")
@click.option(
    "--current",
    "current_branch",
    default=None,
    help="Reviewed branch label (defaults to the checked-out branch)",
)
@click.argument("body", required=True)
@click.pass_context
def add(
    ctx: click.Context,
    file_path: Path,
    line_range: str,
    base_branch: str,
    current_branch: str | None,
    body: str,
):
    """
    Anchor a new annotation to a line range of a file.

    Examples:

        review-anchors add src/main.py -L 42:45 "Fix this function"
    """
    if not body.strip():
        _fail("Annotation text must not be empty", 1)

    manager, project_root = _open_manager(ctx)
    relative = _relative(file_path, project_root)

    try:
        start_line, end_line = parse_line_range(line_range)
    except ValueError as e:
        _fail(str(e), 1)

    content = file_path.read_bytes().decode("utf-8", errors="replace")
    line_count = len(split_lines(content))
    if end_line > line_count:
        _fail(
            f"Lines {start_line}-{end_line} are outside {relative} (file has {line_count} lines)",
            1,
        )

    if current_branch is None:
        current_branch = detect_current_branch(project_root) or ""

    with _storage_errors():
        annotation = manager.create(
            relative,
            content,
            start_line,
            end_line,
            body,
            base_branch=base_branch,
            current_branch=current_branch,
        )

    click.echo(f"Created annotation {annotation.id}")
    click.echo(f"  File: {relative}")
    click.echo(f"  Lines: {start_line}:{end_line}")


@cli.command(name="list")
@click.argument("file_path", type=click.Path(path_type=Path), required=False)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def list_annotations(ctx: click.Context, file_path: Path | None, json_output: bool):
    """List stored annotations (without revalidating them)."""
    manager, project_root = _open_manager(ctx)

    with _storage_errors():
        if file_path is None:
            annotations = manager.get_all()
        else:
            annotations = manager.get_for_file(_relative(file_path, project_root))

    if json_output:
        records = [a.model_dump(mode="json", by_alias=True) for a in annotations]
        click.echo(json.dumps(records, indent=2))
        return

    if not annotations:
        click.echo("No annotations found.")
        return
    for annotation in annotations:
        click.echo(_summary(annotation, annotation.status.value))


@cli.command()
@click.argument("files", nargs=-1, type=click.Path(path_type=Path))
@click.option(
    "--all",
    "show_all",
    is_flag=True,
    help="Include annotations that could not be relocated, with reasons",
)
@click.option(
    "--rev",
    "revision",
    default=None,
    metavar="REV",
    help="Compare against a git revision instead of the working tree",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def check(
    ctx: click.Context,
    files: tuple[Path, ...],
    show_all: bool,
    revision: str | None,
    json_output: bool,
):
    """
    Revalidate annotations against current file content.

    Valid annotations are shown with corrected positions, which are saved.
    With --all, every annotation is listed with its validation outcome.
    """
    manager, project_root = _open_manager(ctx)

    provider: ContentProvider
    if revision is None:
        provider = WorkingTreeProvider(project_root)
    else:
        provider = GitRevisionProvider(project_root, revision)

    with _storage_errors():
        if files:
            paths = sorted({_relative(f, project_root) for f in files})
        else:
            paths = sorted({a.file_path for a in manager.get_all()})
        content_by_path = provider.read(paths)

        if show_all:
            results = [
                a for a in manager.get_all_annotations_with_status(content_by_path)
                if a.file_path in paths
            ]
        else:
            valid = manager.get_valid_annotations(content_by_path)

    if json_output:
        records = results if show_all else valid
        output = {
            "session": compute_session_key(content_by_path),
            "annotations": [r.model_dump(mode="json", by_alias=True) for r in records],
        }
        click.echo(json.dumps(output, indent=2))
        return

    if show_all:
        if not results:
            click.echo("No annotations found.")
            return
        for item in results:
            info = item.validation_info
            click.echo(f"{_summary(item, info.status.value)}")
            click.echo(f"    {info.reason}")
        return

    if not valid:
        click.echo("No valid annotations.")
        return
    for annotation in valid:
        click.echo(_summary(annotation, annotation.status.value))


@cli.command()
@click.argument("annotation_id", required=True)
@click.argument("body", required=True)
@click.pass_context
def edit(ctx: click.Context, annotation_id: str, body: str):
    """Replace the text of an annotation."""
    if not body.strip():
        _fail("Annotation text must not be empty", 1)

    manager, _ = _open_manager(ctx)
    with _storage_errors():
        try:
            manager.update_text(annotation_id, body)
        except AnnotationNotFound:
            _fail(f"Annotation not found: {annotation_id}", 1)
    click.echo(f"Updated annotation {annotation_id}")


@cli.command()
@click.argument("annotation_id", required=False)
@click.option("--file", "file_path", type=click.Path(path_type=Path), help="File of the annotation")
@click.option("-L", "--lines", "line_range", metavar="START:END", help="Exact live line range")
@click.pass_context
def delete(
    ctx: click.Context,
    annotation_id: str | None,
    file_path: Path | None,
    line_range: str | None,
):
    """
    Delete an annotation by id, or by file and exact line range.

    Examples:

        review-anchors delete 01HQ3Z8K6V7Y2N4M5P9R0S1T2U

        review-anchors delete --file src/main.py -L 42:45
    """
    by_location = file_path is not None or line_range is not None
    if annotation_id is None and not by_location:
        _fail("Must specify either an annotation id or --file with -L", 1)
    if annotation_id is not None and by_location:
        _fail("Cannot specify both an annotation id and --file/-L (mutually exclusive)", 1)
    if by_location and (file_path is None or line_range is None):
        _fail("--file and -L must be used together", 1)

    manager, project_root = _open_manager(ctx)

    if annotation_id is not None:
        with _storage_errors():
            removed = 1 if manager.delete_by_id(annotation_id) else 0
    else:
        assert file_path is not None and line_range is not None  # Type narrowing for mypy
        try:
            start_line, end_line = parse_line_range(line_range)
        except ValueError as e:
            _fail(str(e), 1)
        relative = _relative(file_path, project_root)
        with _storage_errors():
            removed = manager.delete_by_location(relative, start_line, end_line)

    if removed == 0:
        _fail("No matching annotation found", 1)
    click.echo(f"Deleted {removed} annotation(s)")


@cli.command()
@click.confirmation_option(prompt="Delete all annotations?")
@click.pass_context
def clear(ctx: click.Context):
    """Delete every stored annotation."""
    manager, _ = _open_manager(ctx)
    with _storage_errors():
        manager.clear_all()
    click.echo("Cleared all annotations")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def stats(ctx: click.Context, json_output: bool):
    """Show annotation counts."""
    manager, _ = _open_manager(ctx)
    with _storage_errors():
        summary = manager.stats()

    if json_output:
        click.echo(summary.model_dump_json(indent=2))
        return

    click.echo(f"Annotations: {summary.total_annotations}")
    click.echo(f"Files: {summary.files_with_annotations}")
    click.echo(f"Average per file: {summary.average_per_file}")
    if summary.oldest is not None:
        click.echo(f"Oldest: {summary.oldest}")
        click.echo(f"Newest: {summary.newest}")


@cli.command(name="import")
@click.argument("json_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_annotations(ctx: click.Context, json_file: Path):
    """Replace all annotations with the records in JSON_FILE."""
    manager, _ = _open_manager(ctx)
    try:
        imported = manager.import_json(json_file.read_text(encoding="utf-8"))
    except ValueError as e:
        _fail(str(e), 1)
    except (OSError, StoreLockTimeout) as e:
        _fail(str(e), 2)
    click.echo(f"Imported {imported} annotation(s)")


if __name__ == "__main__":
    cli()
