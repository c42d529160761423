import itertools
import logging
from typing import Optional

from clinic.exceptions import AuthError, ValidationError, WriteError
from clinic.schemas.notice import Notice

logger = logging.getLogger(__name__)


class NoticeBoard:
    """Collects the user-visible notices raised by one screen or session."""

    def __init__(self):
        self._notices: list[Notice] = []
        self._ids = itertools.count(1)

    def post(
        self,
        title: str,
        message: str,
        level: str = "info",
        field: Optional[str] = None,
        retryable: bool = False,
    ) -> Notice:
        notice = Notice(
            id=next(self._ids),
            level=level,
            title=title,
            message=message,
            field=field,
            retryable=retryable,
        )
        self._notices.append(notice)
        return notice

    def success(self, title: str, message: str) -> Notice:
        return self.post(title, message, level="success")

    def report(self, title: str, exc: Exception) -> Notice:
        """Turn a caught failure into the matching notice."""
        if isinstance(exc, ValidationError):
            return self.post(title, exc.message, level="error", field=exc.field)
        if isinstance(exc, AuthError):
            return self.post(title, exc.message, level="error")
        if isinstance(exc, WriteError):
            return self.post(
                title, "Could not save your changes. Please try again.", level="error", retryable=True
            )
        logger.error("Unexpected failure behind notice %r: %s", title, exc)
        return self.post(title, str(exc) or "Something went wrong", level="error", retryable=True)

    def dismiss(self, notice_id: int) -> None:
        self._notices = [n for n in self._notices if n.id != notice_id]

    def clear(self) -> None:
        self._notices = []

    @property
    def notices(self) -> list[Notice]:
        return list(self._notices)

    @property
    def latest(self) -> Optional[Notice]:
        return self._notices[-1] if self._notices else None

    def __len__(self) -> int:
        return len(self._notices)
