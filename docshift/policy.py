"""Error handling policy implementation."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import List, Optional

from .errors import ErrorCategory, ErrorRecord

logger = logging.getLogger(__name__)


class ErrorPolicy:
    """Records skip and fallback events without ever aborting the run.

    Failures local to one leaf, segment or batch are logged and counted so
    that silent degradation still shows up in the run report. Structural
    failures are raised as exceptions elsewhere and never pass through here.
    """

    def __init__(self) -> None:
        self.records: List[ErrorRecord] = []
        self.counts: Counter[ErrorCategory] = Counter()
        self._lock = threading.Lock()

    def handle_error(
        self,
        category: ErrorCategory,
        message: str,
        details: Optional[str] = None,
    ) -> None:
        """Record a handled error and log it as a warning."""

        with self._lock:
            self.records.append(
                ErrorRecord(category=category, message=message, details=details)
            )
            self.counts[category] += 1

        if details:
            logger.warning("%s (%s)", message, details)
        else:
            logger.warning(message)

    def count(self, category: ErrorCategory) -> int:
        with self._lock:
            return self.counts[category]

    @property
    def total(self) -> int:
        with self._lock:
            return len(self.records)

    def messages(self) -> List[str]:
        with self._lock:
            return [record.message for record in self.records]
