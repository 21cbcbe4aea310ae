"""Anchor creation and revalidation of annotations against new file content.

Revalidation tries strategies in sequence:
1. Exact match at the annotation's live line numbers (status current)
2. Context-based repositioning anywhere in the file (status moved)
3. Invalidation (status outdated) with a reason for diagnostic display

Revalidation never raises; every failure is reported through the returned
ValidationResult.
"""

from collections.abc import Iterable, Mapping

from review_anchors.config import DEFAULT_CONTEXT_SIZE, DEFAULT_CONTEXT_THRESHOLD
from review_anchors.fuzzy import find_with_context, normalize_content, split_lines
from review_anchors.logging import get_logger
from review_anchors.models import (
    Anchor,
    Annotation,
    AnnotationStatus,
    AnnotationWithStatus,
    ContextLines,
    LegacyAnnotation,
    LineNumbers,
    LineSpan,
    ValidationResult,
)

REASON_UNCHANGED = "Lines unchanged at original position"
REASON_LEGACY = "Legacy comment format"
REASON_MODIFIED = "Lines have been modified or removed"
REASON_EMPTY_ANCHOR = "Anchor has no content to match"
REASON_FILE_MISSING = "File not in current diff"


def build_anchor(
    content: str,
    start_line: int,
    end_line: int,
    *,
    base_branch: str = "",
    current_branch: str = "",
    context_size: int = DEFAULT_CONTEXT_SIZE,
) -> Anchor:
    """Build an anchor for lines start_line..end_line of content.

    The caller must ensure 1 <= start_line <= end_line <= line count; the
    range is not checked here.

    Args:
        content: Full file text the range was selected in
        start_line: First anchored line (1-indexed, inclusive)
        end_line: Last anchored line (1-indexed, inclusive)
        base_branch: Display label for the base revision
        current_branch: Display label for the reviewed revision
        context_size: Lines of context to capture on each side

    Returns:
        Anchor with the joined line content and clipped context
    """
    lines = split_lines(content)

    before_start = max(0, start_line - 1 - context_size)
    after_end = min(len(lines), end_line + context_size)

    return Anchor(
        base_branch=base_branch,
        current_branch=current_branch,
        line_content="\n".join(lines[start_line - 1 : end_line]),
        context_lines=ContextLines(
            before=lines[before_start : start_line - 1],
            after=lines[end_line:after_end],
        ),
        original_line_numbers=LineNumbers(start=start_line, end=end_line),
    )


def check_exact_position(
    anchor: Anchor, current_lines: list[str], start_line: int, end_line: int
) -> bool:
    """Check whether the anchored content still sits at start_line..end_line.

    start_line/end_line are the annotation's live line numbers, not the
    anchor's creation-time ones.
    """
    if start_line < 1 or end_line < start_line or end_line > len(current_lines):
        return False

    current = "\n".join(current_lines[start_line - 1 : end_line])
    return normalize_content(current) == normalize_content(anchor.line_content)


def _range_problem(start_line: int, end_line: int, line_count: int) -> str | None:
    if start_line > end_line:
        return f"Invalid line range {start_line}-{end_line}"
    if start_line < 1 or end_line > line_count:
        return f"Lines {start_line}-{end_line} are out of bounds (file has {line_count} lines)"
    return None


def _outdated(reason: str) -> ValidationResult:
    return ValidationResult(is_valid=False, status=AnnotationStatus.OUTDATED, reason=reason)


def revalidate(
    annotation: Annotation | LegacyAnnotation,
    content: str,
    *,
    threshold: float = DEFAULT_CONTEXT_THRESHOLD,
) -> ValidationResult:
    """Revalidate one annotation against the current content of its file.

    Evaluated fresh on every call; nothing is cached and the annotation is
    not modified. Use Annotation.apply_validation() to apply the outcome.

    Args:
        annotation: Annotation to check (a LegacyAnnotation is always outdated)
        content: Current full text of the annotation's file
        threshold: Minimum fraction of context lines that must agree when
            repositioning

    Returns:
        ValidationResult; current with the unchanged range, moved with the
        new range, or outdated with a reason
    """
    if isinstance(annotation, LegacyAnnotation) or getattr(annotation, "anchor", None) is None:
        return _outdated(REASON_LEGACY)

    try:
        return _revalidate(annotation, content, threshold)
    except Exception as e:
        get_logger().warning(
            "Failed to validate annotation",
            id=getattr(annotation, "id", None),
            error=str(e),
        )
        return _outdated(f"Validation error: {e}")


def _revalidate(annotation: Annotation, content: str, threshold: float) -> ValidationResult:
    anchor = annotation.anchor
    current_lines = split_lines(content)
    start_line, end_line = annotation.start_line, annotation.end_line

    if check_exact_position(anchor, current_lines, start_line, end_line):
        return ValidationResult(
            is_valid=True,
            status=AnnotationStatus.CURRENT,
            reason=REASON_UNCHANGED,
            new_position=LineSpan(start_line=start_line, end_line=end_line),
        )

    # Blank anchored lines would match any blank region
    if not normalize_content(anchor.line_content):
        return _outdated(REASON_EMPTY_ANCHOR)

    match = find_with_context(anchor, current_lines, threshold=threshold)
    if match.found:
        return ValidationResult(
            is_valid=True,
            status=AnnotationStatus.MOVED,
            reason=(
                f"Lines moved from {start_line}-{end_line} "
                f"to {match.start_line}-{match.end_line}"
            ),
            new_position=LineSpan(start_line=match.start_line, end_line=match.end_line),
        )

    return _outdated(_range_problem(start_line, end_line, len(current_lines)) or REASON_MODIFIED)


def get_valid_annotations_for_files(
    annotations: Iterable[Annotation],
    content_by_path: Mapping[str, str],
    *,
    threshold: float = DEFAULT_CONTEXT_THRESHOLD,
) -> list[Annotation]:
    """Return the annotations that are still valid, with corrected positions.

    Annotations whose file is absent from content_by_path are skipped. Valid
    annotations have their live position and status updated in place;
    invalid ones are left untouched and excluded.
    """
    valid: list[Annotation] = []
    for annotation in annotations:
        content = content_by_path.get(annotation.file_path)
        if content is None:
            continue

        result = revalidate(annotation, content, threshold=threshold)
        if not result.is_valid:
            continue

        if annotation.apply_validation(result):
            get_logger().debug(
                "Annotation repositioned",
                id=annotation.id,
                status=annotation.status.value,
                lines=f"{annotation.start_line}-{annotation.end_line}",
            )
        valid.append(annotation)
    return valid


def get_annotations_with_status(
    annotations: Iterable[Annotation],
    content_by_path: Mapping[str, str],
    *,
    threshold: float = DEFAULT_CONTEXT_THRESHOLD,
) -> list[AnnotationWithStatus]:
    """Pair every annotation with its validation outcome, without filtering.

    Returned records are copies; the input annotations are not modified.
    """
    results: list[AnnotationWithStatus] = []
    for annotation in annotations:
        content = content_by_path.get(annotation.file_path)
        if content is None:
            result = _outdated(REASON_FILE_MISSING)
        else:
            result = revalidate(annotation, content, threshold=threshold)
        results.append(AnnotationWithStatus.from_annotation(annotation, result))
    return results
