"""Anchoring of review comments to line ranges that survive file edits.

This package contains:
- Annotation and Anchor models, with migration of legacy records
- Anchor building and revalidation (current / moved / outdated)
- AnnotationManager, which owns a persisted annotation collection
"""

from .anchors import (
    build_anchor,
    check_exact_position,
    get_annotations_with_status,
    get_valid_annotations_for_files,
    revalidate,
)
from .config import MatchingConfig
from .fuzzy import find_with_context, normalize_content
from .manager import AnnotationManager, AnnotationNotFound
from .models import Anchor, Annotation, AnnotationStatus, ValidationResult
from .storage import JsonFileStore, MemoryStore

__version__ = "0.1.0"

__all__ = [
    "Anchor",
    "Annotation",
    "AnnotationManager",
    "AnnotationNotFound",
    "AnnotationStatus",
    "JsonFileStore",
    "MatchingConfig",
    "MemoryStore",
    "ValidationResult",
    "build_anchor",
    "check_exact_position",
    "find_with_context",
    "get_annotations_with_status",
    "get_valid_annotations_for_files",
    "normalize_content",
    "revalidate",
]
