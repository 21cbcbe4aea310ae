"""Content normalization and context-based repositioning for anchors.

Content comparison is always exact after normalization; only the lines
surrounding a candidate region are matched partially, with a majority of
context lines required to agree.
"""

import hashlib
from collections.abc import Mapping
from typing import NamedTuple

from review_anchors.config import DEFAULT_CONTEXT_THRESHOLD
from review_anchors.models import Anchor


def normalize_line_endings(text: str) -> str:
    """Convert CRLF and lone CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def normalize_content(text: str) -> str:
    """Normalize text before any content equality comparison.

    Line endings become LF and leading/trailing whitespace of the whole
    string (not of each line) is removed.
    """
    return normalize_line_endings(text).strip()


def split_lines(content: str) -> list[str]:
    """Split file content into lines.

    A trailing newline produces a final empty line, so "a\\nb\\n" has three
    lines. CRLF and lone CR both end a line, so a classic-Mac file ("a\\rb")
    has two lines rather than one. Every component splits with this function
    so line numbers agree.
    """
    return normalize_line_endings(content).split("\n")


def context_match_ratio(expected: list[str], actual: list[str | None]) -> float:
    """Fraction of expected context lines equal to their actual counterpart.

    Args:
        expected: Context lines recorded in the anchor
        actual: Lines at the same offsets in the current file; None where the
            offset falls outside the file

    Returns:
        1.0 when expected is empty, otherwise matching / len(expected)
    """
    if not expected:
        return 1.0

    matching = sum(
        1
        for want, got in zip(expected, actual)
        if got is not None and normalize_content(want) == normalize_content(got)
    )
    return matching / len(expected)


def _lines_before(lines: list[str], index: int, count: int) -> list[str | None]:
    return [lines[i] if i >= 0 else None for i in range(index - count, index)]


def _lines_after(lines: list[str], index: int, count: int) -> list[str | None]:
    return [lines[i] if i < len(lines) else None for i in range(index, index + count)]


class RepositionResult(NamedTuple):
    """Result of a context-based search for an anchor's lines."""

    found: bool
    start_line: int | None = None  # 1-indexed
    end_line: int | None = None  # 1-indexed, inclusive


def find_with_context(
    anchor: Anchor,
    current_lines: list[str],
    *,
    threshold: float = DEFAULT_CONTEXT_THRESHOLD,
) -> RepositionResult:
    """Locate an anchor's lines elsewhere in the file using content plus context.

    Candidate start positions are scanned top to bottom and the first one
    satisfying all of the following wins (no ranking between matches):

    1. At least `threshold` of the anchor's before-context lines equal the
       lines immediately preceding the candidate (lines missing at the start
       of the file count as mismatches)
    2. The candidate region equals the anchor's line content after
       normalization
    3. At least `threshold` of the after-context lines equal the lines
       immediately following the region (missing lines count as mismatches)

    An empty before or after context list skips its check.

    Args:
        anchor: Anchor whose line_content and context_lines are searched for
        current_lines: Current file content, split with split_lines()
        threshold: Minimum fraction of context lines that must agree

    Returns:
        RepositionResult with the 1-indexed range, or found=False
    """
    target = normalize_content(anchor.line_content)
    target_len = len(split_lines(anchor.line_content))
    before = anchor.context_lines.before
    after = anchor.context_lines.after

    for i in range(len(current_lines) - target_len + 1):
        if before:
            ratio = context_match_ratio(before, _lines_before(current_lines, i, len(before)))
            if ratio < threshold:
                continue

        candidate = "\n".join(current_lines[i : i + target_len])
        if normalize_content(candidate) != target:
            continue

        if after:
            ratio = context_match_ratio(
                after, _lines_after(current_lines, i + target_len, len(after))
            )
            if ratio < threshold:
                continue

        return RepositionResult(found=True, start_line=i + 1, end_line=i + target_len)

    return RepositionResult(found=False)


def compute_content_hash(text: str) -> str:
    """Compute SHA-256 of text with normalized line endings.

    The content length is hashed along with the content.

    Returns:
        Hash string with "sha256:" prefix
    """
    normalized = normalize_line_endings(text)
    payload = f"{len(normalized)}:{normalized}"
    return f"sha256:{hashlib.sha256(payload.encode('utf-8')).hexdigest()}"


def compute_session_key(content_by_path: Mapping[str, str]) -> str:
    """Derive a cache key identifying one set of compared file contents.

    Depends only on paths and content, never on branch names, so a
    force-push that leaves content unchanged keeps the same key. Paths are
    sorted so provider ordering does not matter.
    """
    signature = "|".join(
        f"{path}:{compute_content_hash(content_by_path[path])}" for path in sorted(content_by_path)
    )
    return compute_content_hash(signature)
