"""Content providers: whole-file text per path at the revision under review.

Annotations are revalidated against complete file content only; these
providers never produce hunks or line classifications. Paths are relative
to the project root with POSIX separators.
"""

import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol


class ProviderError(Exception):
    """Base exception for content provider errors."""

    pass


class GitNotAvailableError(ProviderError):
    """Raised when git is not available in the environment."""

    pass


class NotAGitRepositoryError(ProviderError):
    """Raised when operating outside a git repository."""

    pass


class ContentProvider(Protocol):
    def read(self, paths: Iterable[str]) -> dict[str, str]: ...


def find_project_root(start_path: Path | None = None) -> Path:
    """
    Find the project root by looking for a .git directory or file.

    Args:
        start_path: Starting directory for search (defaults to cwd)

    Returns:
        Absolute path to project root

    Raises:
        ValueError: If no .git entry is found in start_path or any parent
    """
    current = (start_path or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        if (parent / ".git").exists():
            return parent

    raise ValueError(
        f"No .git directory found in {current} or any parent directory.\n"
        "Run inside a git repository or pass --store explicitly."
    )


def to_relative_path(path: Path, project_root: Path) -> str:
    """
    Express path relative to project_root with POSIX separators.

    Raises:
        ValueError: If path resolves outside project_root
    """
    resolved = path.resolve() if path.is_absolute() else (project_root / path).resolve()
    root = project_root.resolve()
    try:
        return resolved.relative_to(root).as_posix()
    except ValueError:
        raise ValueError(
            f"Path is outside project root:\n  Path: {resolved}\n  Root: {root}"
        ) from None


def is_binary(data: bytes) -> bool:
    """Null-byte heuristic on the first 8 KiB, as git uses."""
    return b"\x00" in data[:8192]


class WorkingTreeProvider:
    """Reads files from disk, including uncommitted edits.

    Missing, unreadable and binary files are omitted from the result, which
    excludes their annotations from the comparison.
    """

    def __init__(self, project_root: Path) -> None:
        self.project_root = project_root

    def read(self, paths: Iterable[str]) -> dict[str, str]:
        contents: dict[str, str] = {}
        for path in paths:
            file_path = self.project_root / path
            if not file_path.is_file():
                continue
            try:
                data = file_path.read_bytes()
            except OSError:
                continue
            if is_binary(data):
                continue
            contents[path] = data.decode("utf-8", errors="replace")
        return contents


def _run_git(args: list[str], cwd: Path, timeout: float = 10) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise GitNotAvailableError("Git is not available in the environment") from e
    except subprocess.TimeoutExpired as e:
        raise ProviderError(f"git {args[0]} timed out after {timeout}s") from e


def detect_current_branch(project_root: Path) -> str | None:
    """Name of the checked-out branch, or None if unknown (detached, no git)."""
    try:
        result = _run_git(["rev-parse", "--abbrev-ref", "HEAD"], project_root, timeout=5)
    except ProviderError:
        return None
    if result.returncode != 0:
        return None
    name = result.stdout.decode("utf-8", errors="replace").strip()
    return None if not name or name == "HEAD" else name


class GitRevisionProvider:
    """Reads files as they exist at a git revision (`git show REV:path`).

    Paths absent at the revision are omitted from the result.
    """

    def __init__(self, project_root: Path, revision: str) -> None:
        self.project_root = project_root
        self.revision = revision

    def _check_repository(self) -> None:
        result = _run_git(["rev-parse", "--git-dir"], self.project_root, timeout=5)
        if result.returncode != 0:
            raise NotAGitRepositoryError(f"{self.project_root} is not a git repository")

    def read(self, paths: Iterable[str]) -> dict[str, str]:
        """
        Raises:
            GitNotAvailableError: If git is not installed
            NotAGitRepositoryError: If project_root is not a git repository
        """
        self._check_repository()

        contents: dict[str, str] = {}
        for path in paths:
            result = _run_git(["show", f"{self.revision}:{path}"], self.project_root)
            if result.returncode != 0 or is_binary(result.stdout):
                continue
            contents[path] = result.stdout.decode("utf-8", errors="replace")
        return contents
