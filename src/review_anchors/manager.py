"""Annotation lifecycle: owns the collection and applies revalidation results."""

import json
from collections.abc import Mapping

from review_anchors.anchors import (
    build_anchor,
    get_annotations_with_status,
    get_valid_annotations_for_files,
)
from review_anchors.config import MatchingConfig
from review_anchors.logging import get_logger
from review_anchors.models import (
    Annotation,
    AnnotationStats,
    AnnotationStatus,
    AnnotationWithStatus,
)
from review_anchors.storage import AnnotationStore, dump_annotations, load_annotations


class AnnotationNotFound(KeyError):  # noqa: N818
    """Raised when no annotation has the requested id."""

    pass


class AnnotationManager:
    """Single owner of an annotation collection persisted in a store.

    Every mutation reads the full collection and writes it back inside the
    store's transaction. CRUD operations never revalidate; queries that
    revalidate persist the position and status corrections they make.
    """

    def __init__(self, store: AnnotationStore, config: MatchingConfig | None = None) -> None:
        self.store = store
        self.config = config or MatchingConfig()

    def _load(self) -> list[Annotation]:
        return load_annotations(self.store.get_all())

    def _save(self, annotations: list[Annotation]) -> None:
        self.store.replace_all(dump_annotations(annotations))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create(
        self,
        file_path: str,
        content: str,
        start_line: int,
        end_line: int,
        text: str,
        *,
        base_branch: str = "",
        current_branch: str = "",
        code_snippet: str | None = None,
    ) -> Annotation:
        """Anchor a new annotation to lines of content and store it.

        The line range must already be validated against content.

        Args:
            file_path: Relative path identifying the file
            content: Full text of the file the range was selected in
            start_line: First commented line (1-indexed)
            end_line: Last commented line (1-indexed, inclusive)
            text: Comment body
            base_branch: Display label for the base revision
            current_branch: Display label for the reviewed revision
            code_snippet: Display snippet (defaults to the anchored lines)

        Returns:
            The stored Annotation
        """
        anchor = build_anchor(
            content,
            start_line,
            end_line,
            base_branch=base_branch,
            current_branch=current_branch,
            context_size=self.config.context_size,
        )
        annotation = Annotation(
            file_path=file_path,
            start_line=start_line,
            end_line=end_line,
            text=text,
            code_snippet=anchor.line_content if code_snippet is None else code_snippet,
            anchor=anchor,
        )
        return self.add(annotation)

    def add(self, annotation: Annotation) -> Annotation:
        with self.store.transaction():
            annotations = self._load()
            annotations.append(annotation)
            self._save(annotations)
        return annotation

    def update_text(self, annotation_id: str, text: str) -> Annotation:
        """Replace an annotation's text and refresh its timestamp.

        Raises:
            AnnotationNotFound: If no annotation has annotation_id
            ValueError: If text is empty
        """
        with self.store.transaction():
            annotations = self._load()
            for annotation in annotations:
                if annotation.id == annotation_id:
                    annotation.set_text(text)
                    self._save(annotations)
                    return annotation
        raise AnnotationNotFound(annotation_id)

    def delete_by_id(self, annotation_id: str) -> bool:
        """Delete an annotation by id. Returns True if one was removed."""
        with self.store.transaction():
            annotations = self._load()
            remaining = [a for a in annotations if a.id != annotation_id]
            self._save(remaining)
        return len(remaining) != len(annotations)

    def delete_by_location(self, file_path: str, start_line: int, end_line: int) -> int:
        """Delete annotations at exactly this file and live range.

        Returns:
            Number of annotations removed
        """
        with self.store.transaction():
            annotations = self._load()
            remaining = [
                a
                for a in annotations
                if not (
                    a.file_path == file_path
                    and a.start_line == start_line
                    and a.end_line == end_line
                )
            ]
            self._save(remaining)
        return len(annotations) - len(remaining)

    def clear_all(self) -> None:
        with self.store.transaction():
            self._save([])

    def import_json(self, data: str) -> int:
        """Replace the collection with records from a JSON array.

        Legacy records are migrated and invalid records skipped, as on load.

        Returns:
            Number of annotations imported

        Raises:
            ValueError: If data is not valid JSON or not an array
        """
        try:
            records = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e
        if not isinstance(records, list):
            raise ValueError(f"Expected a JSON array of annotations, got {type(records).__name__}")

        with self.store.transaction():
            annotations = load_annotations(records)
            self._save(annotations)
        return len(annotations)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_all(self) -> list[Annotation]:
        return self._load()

    def get(self, annotation_id: str) -> Annotation:
        """Raises AnnotationNotFound if no annotation has annotation_id."""
        for annotation in self._load():
            if annotation.id == annotation_id:
                return annotation
        raise AnnotationNotFound(annotation_id)

    def get_for_file(self, file_path: str) -> list[Annotation]:
        return [a for a in self._load() if a.file_path == file_path]

    def get_for_line(self, file_path: str, line: int) -> list[Annotation]:
        """Annotations of file_path whose live range includes line."""
        return [a for a in self._load() if a.file_path == file_path and a.covers(line)]

    def count(self) -> int:
        return len(self._load())

    def stats(self) -> AnnotationStats:
        annotations = self._load()
        if not annotations:
            return AnnotationStats(total_annotations=0, files_with_annotations=0, average_per_file=0)

        files = {a.file_path for a in annotations}
        timestamps = sorted(a.timestamp for a in annotations)
        return AnnotationStats(
            total_annotations=len(annotations),
            files_with_annotations=len(files),
            average_per_file=round(len(annotations) / len(files), 2),
            oldest=timestamps[0],
            newest=timestamps[-1],
        )

    def get_valid_annotations(self, content_by_path: Mapping[str, str]) -> list[Annotation]:
        """Annotations still valid against content_by_path, with corrected positions.

        Position and status corrections are persisted. Annotations of files
        missing from content_by_path, and outdated ones, are omitted but kept
        in the store.
        """
        with self.store.transaction():
            annotations = self._load()
            before = [(a.start_line, a.end_line, a.status) for a in annotations]
            valid = get_valid_annotations_for_files(
                annotations, content_by_path, threshold=self.config.context_threshold
            )
            after = [(a.start_line, a.end_line, a.status) for a in annotations]

            if after != before:
                moved = sum(1 for a in valid if a.status == AnnotationStatus.MOVED)
                get_logger().debug("Persisting revalidated positions", moved=moved)
                self._save(annotations)
        return valid

    def get_valid_annotations_for_file(
        self, file_path: str, content_by_path: Mapping[str, str]
    ) -> list[Annotation]:
        return [a for a in self.get_valid_annotations(content_by_path) if a.file_path == file_path]

    def get_all_annotations_with_status(
        self, content_by_path: Mapping[str, str]
    ) -> list[AnnotationWithStatus]:
        """Every stored annotation with its validation outcome (diagnostic view).

        Nothing is filtered and nothing is persisted.
        """
        return get_annotations_with_status(
            self._load(), content_by_path, threshold=self.config.context_threshold
        )


