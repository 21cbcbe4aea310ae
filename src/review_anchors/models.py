"""Data models for anchored review annotations.

Records serialize with camelCase keys (filePath, startLine, anchor.lineContent,
...) so that stores written by earlier versions load unchanged. Python code
uses the snake_case attribute names; both spellings are accepted on input.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator
from pydantic.alias_generators import to_camel
from ulid import new as new_ulid

LEGACY_BRANCH = "legacy"


def utc_now() -> str:
    """Current time as an ISO 8601 UTC timestamp with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_timestamp(value: Any) -> str:
    """Coerce a stored timestamp to ISO 8601 UTC.

    UTC values are returned unchanged, other offsets are converted, naive
    values are taken as UTC and unparseable values become the current time.
    """
    if not isinstance(value, str):
        return utc_now()
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return utc_now()

    if dt.tzinfo is not None and dt.utcoffset() == timedelta(0):
        return value
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class AnnotationStatus(str, Enum):
    """Where an annotation stands relative to the content it was anchored to."""

    CURRENT = "current"  # Anchored lines found at the stored position
    MOVED = "moved"  # Anchored lines relocated via context match
    OUTDATED = "outdated"  # Anchored lines could not be found


class _RecordModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContextLines(_RecordModel):
    """Lines immediately surrounding an anchored range, nearest last/first."""

    model_config = ConfigDict(frozen=True)

    before: list[str] = Field(default_factory=list)
    after: list[str] = Field(default_factory=list)


class LineNumbers(_RecordModel):
    """The range an anchor was built from (informational only)."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int


class Anchor(_RecordModel):
    """Evidence used to relocate an annotation after the file changes.

    - line_content: exact joined text of the originally commented lines
    - context_lines: up to N lines before and after the range
    - original_line_numbers: the range the anchor was built from
    - base_branch/current_branch: display labels, never used for matching
    """

    model_config = ConfigDict(frozen=True)

    base_branch: str = ""
    current_branch: str = ""
    line_content: str
    context_lines: ContextLines = Field(default_factory=ContextLines)
    original_line_numbers: LineNumbers


class LineSpan(_RecordModel):
    """A 1-indexed inclusive line range."""

    model_config = ConfigDict(frozen=True)

    start_line: int
    end_line: int


class ValidationResult(_RecordModel):
    """Outcome of revalidating one annotation against current file content."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    status: AnnotationStatus
    reason: str
    new_position: LineSpan | None = None


class Annotation(_RecordModel):
    """A review comment bound to a line range of a file."""

    id: str = Field(default_factory=lambda: str(new_ulid()), min_length=1)
    file_path: str = Field(..., min_length=1)
    start_line: int
    end_line: int
    text: str = Field(..., min_length=1)
    code_snippet: str = ""
    timestamp: str = Field(default_factory=utc_now)
    status: AnnotationStatus = AnnotationStatus.CURRENT
    anchor: Anchor

    @field_validator("timestamp")
    @classmethod
    def validate_utc_timestamp(cls, v: str) -> str:
        """Validate that timestamp is valid ISO 8601 UTC format."""
        try:
            dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
            if dt.tzinfo is None or dt.tzinfo.utcoffset(None) != timezone.utc.utcoffset(None):
                raise ValueError("Timestamp must be in UTC timezone")
            return v
        except (ValueError, AttributeError) as e:
            raise ValueError(f"Invalid ISO 8601 UTC timestamp: {v}") from e

    def covers(self, line: int) -> bool:
        """True if line falls within the annotation's live range."""
        return self.start_line <= line <= self.end_line

    def set_text(self, text: str) -> None:
        """Replace the comment body and refresh the modification timestamp."""
        if not text:
            raise ValueError("Annotation text must not be empty")
        self.text = text
        self.timestamp = utc_now()

    def apply_validation(self, result: ValidationResult) -> bool:
        """Apply a valid revalidation outcome to the live position and status.

        The anchor is never touched. Invalid results are ignored so that an
        outdated annotation keeps the position it was last seen at.

        Returns:
            True if start_line, end_line or status changed
        """
        if not result.is_valid:
            return False

        before = (self.start_line, self.end_line, self.status)
        if result.new_position is not None:
            self.start_line = result.new_position.start_line
            self.end_line = result.new_position.end_line
        self.status = result.status
        return (self.start_line, self.end_line, self.status) != before


class AnnotationWithStatus(Annotation):
    """An annotation copy carrying its latest validation outcome."""

    validation_info: ValidationResult

    @classmethod
    def from_annotation(
        cls, annotation: Annotation, result: ValidationResult
    ) -> "AnnotationWithStatus":
        return cls.model_validate({**annotation.model_dump(), "validation_info": result})


class LegacyDiffContext(_RecordModel):
    base_branch: str | None = None
    current_branch: str | None = None


class LegacyAnnotation(_RecordModel):
    """A record stored before anchors existed.

    Branch labels were kept either top-level or under diffContext. The
    display snippet is the only evidence of what was commented on.
    """

    id: str = Field(default_factory=lambda: str(new_ulid()), min_length=1)
    file_path: str = Field(..., min_length=1)
    start_line: int
    end_line: int | None = None
    text: str = Field(..., min_length=1)
    code_snippet: str = ""
    timestamp: str = Field(default_factory=utc_now)
    base_branch: str | None = None
    current_branch: str | None = None
    diff_context: LegacyDiffContext | None = None


def upgrade(record: LegacyAnnotation) -> Annotation:
    """Convert a legacy record into an outdated Annotation with a synthesized anchor.

    The synthesized anchor has no context lines and uses the stored snippet as
    its line content, so later revalidation can still recover the annotation
    when the snippet is found at its stored position.
    """
    context = record.diff_context or LegacyDiffContext()
    end_line = record.end_line if record.end_line is not None else record.start_line

    anchor = Anchor(
        base_branch=context.base_branch or record.base_branch or LEGACY_BRANCH,
        current_branch=context.current_branch or record.current_branch or LEGACY_BRANCH,
        line_content=record.code_snippet,
        context_lines=ContextLines(),
        original_line_numbers=LineNumbers(start=record.start_line, end=end_line),
    )
    return Annotation(
        id=record.id,
        file_path=record.file_path,
        start_line=record.start_line,
        end_line=end_line,
        text=record.text,
        code_snippet=record.code_snippet,
        timestamp=record.timestamp,
        status=AnnotationStatus.OUTDATED,
        anchor=anchor,
    )


def _record_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "current" if value.get("anchor") else "legacy"
    return "legacy" if isinstance(value, LegacyAnnotation) else "current"


StoredRecord = Annotated[
    Union[
        Annotated[Annotation, Tag("current")],
        Annotated[LegacyAnnotation, Tag("legacy")],
    ],
    Discriminator(_record_kind),
]


class AnnotationStats(BaseModel):
    """Summary counts over an annotation collection."""

    total_annotations: int = Field(..., ge=0)
    files_with_annotations: int = Field(..., ge=0)
    average_per_file: float = Field(..., ge=0)
    oldest: str | None = None
    newest: str | None = None
