"""Error kinds raised by the progression engine."""

from typing import Any, Dict, Optional


class ProgressionError(Exception):
    """Base class for all progression failures.

    ``code`` is the stable error kind surfaced to callers and ``retryable``
    tells whether repeating the whole operation may succeed.
    """

    code = "progression_error"
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.context}


class NotFoundError(ProgressionError):
    """Unknown learner, path, lesson or challenge."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str]):
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class InvalidLessonReferenceError(ProgressionError):
    """Lesson exists but does not belong to the stated path."""

    code = "invalid_lesson_reference"

    def __init__(self, lesson_id: str, path_id: str):
        super().__init__(
            f"lesson {lesson_id} does not belong to path {path_id}",
            lesson_id=lesson_id,
            path_id=path_id,
        )


class LessonLockedError(ProgressionError):
    """Lesson sits in a chapter whose predecessor is not finished."""

    code = "lesson_locked"

    def __init__(self, lesson_id: str, chapter_index: int):
        super().__init__(
            f"lesson {lesson_id} is in locked chapter {chapter_index}",
            lesson_id=lesson_id,
            chapter_index=chapter_index,
        )


class ConflictError(ProgressionError):
    """Concurrent writes kept colliding after the internal retries."""

    code = "conflict"
    retryable = True


class StorageTimeoutError(ProgressionError):
    """Storage did not answer within the configured bound."""

    code = "timeout"
    retryable = True


class CatalogConflictError(ProgressionError):
    """Content sync would orphan learner progress or steal another path's rows."""

    code = "catalog_conflict"

    def __init__(self, message: str, path_id: str, **context: Any):
        super().__init__(message, path_id=path_id, **context)
