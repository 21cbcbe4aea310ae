"""Annotation persistence: store adapters and record (de)serialization.

A store only needs whole-collection semantics: read every record, replace
every record. Records are JSON-compatible dicts in the camelCase persisted
shape; conversion to and from Annotation objects (including migration of
legacy records) happens in load_annotations()/dump_annotations().
"""

import contextlib
import copy
import json
import os
import tempfile
import threading
from collections.abc import Generator, Iterable
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from review_anchors.locking import file_lock
from review_anchors.logging import get_logger
from review_anchors.models import (
    Annotation,
    AnnotationStatus,
    LegacyAnnotation,
    StoredRecord,
    normalize_timestamp,
    upgrade,
)

Record = dict[str, Any]

_RECORD_ADAPTER: TypeAdapter[Annotation | LegacyAnnotation] = TypeAdapter(StoredRecord)
_STATUSES = {status.value for status in AnnotationStatus}


class AnnotationStore(Protocol):
    """Whole-collection persistence used by AnnotationManager."""

    def get_all(self) -> list[Record]: ...

    def replace_all(self, records: list[Record]) -> None: ...

    def transaction(self) -> AbstractContextManager[None]: ...


def parse_record(raw: Record) -> Annotation:
    """
    Validate one stored record, upgrading it if it predates anchors.

    Raises:
        ValidationError: If the record is missing required fields
    """
    record = _RECORD_ADAPTER.validate_python(raw)
    if isinstance(record, LegacyAnnotation):
        return upgrade(record)
    return record


def _key(record: Record, name: str) -> str:
    """Key under which record holds (or should hold) field name.

    Absent fields follow the spelling of the record's file path key.
    """
    camel = to_camel(name)
    if camel in record:
        return camel
    if name in record or "file_path" in record:
        return name
    return camel


def _is_line_number(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def repair_record(raw: Record) -> Record | None:
    """
    Coerce a stored record's optional fields into loadable form.

    Only a missing file path, missing text or non-integer start line make a
    record unusable (None). Otherwise ids and text become strings, a null
    snippet becomes empty, an unknown status becomes outdated, a bad end line
    falls back to the start line and timestamps are normalized to UTC.
    """
    record = dict(raw)
    file_key, start_key = _key(record, "file_path"), _key(record, "start_line")
    if not (
        record.get(file_key) and record.get("text") and _is_line_number(record.get(start_key))
    ):
        return None

    record[file_key] = str(record[file_key])
    record["text"] = str(record["text"])

    end_key = _key(record, "end_line")
    if not _is_line_number(record.get(end_key)):
        record[end_key] = record[start_key]

    if record.get("id") is None:
        record.pop("id", None)
    else:
        record["id"] = str(record["id"])

    snippet_key = _key(record, "code_snippet")
    snippet = record.get(snippet_key)
    record[snippet_key] = "" if snippet is None else str(snippet)

    status = record.get("status")
    if status is not None and (not isinstance(status, str) or status not in _STATUSES):
        record["status"] = AnnotationStatus.OUTDATED.value

    record["timestamp"] = normalize_timestamp(record.get("timestamp"))
    return record


def _parse_repaired(record: Record, index: int) -> Annotation:
    try:
        return parse_record(record)
    except ValidationError as e:
        if not record.get("anchor"):
            raise
        get_logger().warning(
            "Discarding unreadable anchor, annotation marked outdated",
            index=index,
            errors=e.error_count(),
        )
    return parse_record({**record, "anchor": None})


def load_annotations(records: Iterable[Any]) -> list[Annotation]:
    """
    Convert stored records to Annotations.

    Records that are not objects or lack a file path, text or integer start
    line are dropped with a warning. Other defects are repaired so that the
    comment survives the next write; a record whose anchor cannot be read is
    kept as an outdated legacy annotation.
    """
    logger = get_logger()
    annotations: list[Annotation] = []
    for index, raw in enumerate(records):
        if not isinstance(raw, dict):
            logger.warning("Skipping non-object annotation record", index=index)
            continue

        record = repair_record(raw)
        if record is None:
            logger.warning(
                "Skipping invalid annotation record",
                index=index,
                reason="missing file path, text or integer start line",
            )
            continue

        try:
            annotations.append(_parse_repaired(record, index))
        except ValidationError as e:
            logger.warning(
                "Skipping invalid annotation record",
                index=index,
                errors=e.error_count(),
            )
    return annotations


def dump_annotations(annotations: Iterable[Annotation]) -> list[Record]:
    """Serialize Annotations to the camelCase persisted shape.

    Fields added by subclasses (such as validation_info) are not persisted.
    """
    fields = set(Annotation.model_fields)
    return [a.model_dump(mode="json", by_alias=True, include=fields) for a in annotations]


class MemoryStore:
    """In-process store; records are deep-copied in and out."""

    def __init__(self, records: Iterable[Record] | None = None) -> None:
        self._records: list[Record] = copy.deepcopy(list(records or []))
        self._lock = threading.RLock()

    def get_all(self) -> list[Record]:
        with self._lock:
            return copy.deepcopy(self._records)

    def replace_all(self, records: list[Record]) -> None:
        with self._lock:
            self._records = copy.deepcopy(records)

    @contextlib.contextmanager
    def transaction(self) -> Generator[None, None, None]:
        with self._lock:
            yield


class JsonFileStore:
    """
    Store backed by a single JSON array file.

    Writes are atomic (temp file + rename) and deterministic (sorted keys,
    2-space indent, trailing newline). transaction() holds an exclusive lock
    on a sibling ".lock" file and is reentrant within one process.
    """

    def __init__(self, path: str | Path, *, timeout: float = 5.0) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.timeout = timeout
        self._thread_lock = threading.RLock()
        self._depth = 0

    def get_all(self) -> list[Record]:
        """
        Read all records.

        Returns:
            Stored records, or an empty list if the file does not exist

        Raises:
            ValueError: If the file is not valid JSON or not a JSON array
        """
        if not self.path.exists():
            return []

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in annotation store {self.path}: {e}") from e

        if not isinstance(data, list):
            raise ValueError(
                f"Annotation store {self.path} must contain a JSON array, "
                f"got {type(data).__name__}"
            )
        return data

    def replace_all(self, records: list[Record]) -> None:
        """
        Atomically replace the stored records.

        Raises:
            OSError: If the write fails (permissions, disk full, etc.)
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        json_str = json.dumps(records, indent=2, sort_keys=True, ensure_ascii=False) + "\n"

        fd, temp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=".tmp_", suffix=".json", text=True
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json_str)
            os.replace(temp_name, self.path)
        except Exception as e:
            with contextlib.suppress(OSError):
                os.unlink(temp_name)
            raise OSError(f"Failed to write annotation store {self.path}: {e}") from e

    @contextlib.contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Serialize a read-modify-write across threads and processes."""
        with self._thread_lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            with file_lock(self.lock_path, timeout=self.timeout):
                self._depth = 1
                try:
                    yield
                finally:
                    self._depth = 0
