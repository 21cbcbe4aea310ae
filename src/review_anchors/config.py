"""Tunable parameters for anchor creation and context repositioning."""

from pydantic import BaseModel, Field

DEFAULT_CONTEXT_SIZE = 3  # Lines captured before and after an anchored range
DEFAULT_CONTEXT_THRESHOLD = 0.5  # Fraction of context lines that must agree


class MatchingConfig(BaseModel, frozen=True):
    """Immutable matching parameters shared by a manager and its queries.

    context_size only affects anchors built after it is set; existing anchors
    keep the context they were created with. context_threshold is applied on
    every repositioning attempt.
    """

    context_size: int = Field(default=DEFAULT_CONTEXT_SIZE, ge=0)
    context_threshold: float = Field(default=DEFAULT_CONTEXT_THRESHOLD, gt=0.0, le=1.0)
