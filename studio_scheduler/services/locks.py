from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Iterable, Iterator

from ..core.errors import SchedulingUnavailable

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Mutual exclusion scoped to one trainer or one member.

    A write always takes its trainer lock first and then member locks in
    ascending id order. Nothing waits for a trainer lock while holding a member
    lock, so two writers can never wait on each other in a cycle.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._trainers: dict[int, threading.Lock] = {}
        self._members: dict[int, threading.Lock] = {}

    def _acquire(self, stack: ExitStack, registry: dict[int, threading.Lock], key: int, label: str) -> None:
        lock = registry.get(key)
        if lock is None:
            lock = registry.setdefault(key, threading.Lock())
        if not lock.acquire(timeout=self.timeout):
            logger.warning("Lock wait timed out", extra={"scope": label, "key": key})
            raise SchedulingUnavailable(f"Timed out waiting for the {label} schedule; retry the request")
        stack.callback(lock.release)

    @contextmanager
    def trainer(self, trainer_id: int) -> Iterator[None]:
        with ExitStack() as stack:
            self._acquire(stack, self._trainers, trainer_id, "trainer")
            yield

    @contextmanager
    def members(self, member_ids: Iterable[int]) -> Iterator[None]:
        with ExitStack() as stack:
            for member_id in sorted(set(member_ids)):
                self._acquire(stack, self._members, member_id, "member")
            yield

    @contextmanager
    def booking_scope(self, trainer_id: int, member_ids: Iterable[int] = ()) -> Iterator[None]:
        with self.trainer(trainer_id), self.members(member_ids):
            yield


__all__ = ["KeyedLocks"]
