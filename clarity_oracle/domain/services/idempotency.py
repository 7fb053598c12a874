"""Process-local record of question ids already submitted or in flight."""

import threading
from typing import Set


class IdempotencyLedger:
    """Thread-safe set of question ids with add/remove/check operations."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids: Set[str] = set()

    def try_add(self, question_id: str) -> bool:
        """Claim an id. Returns False if it was already claimed."""
        with self._lock:
            if question_id in self._ids:
                return False
            self._ids.add(question_id)
            return True

    def remove(self, question_id: str) -> None:
        """Release an id so a later observation can retry it."""
        with self._lock:
            self._ids.discard(question_id)

    def contains(self, question_id: str) -> bool:
        with self._lock:
            return question_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
