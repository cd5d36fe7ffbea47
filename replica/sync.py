"""
replica/sync.py -- Fire-and-forget dispatch of profile changes.

Delivery contract:
  at-most-once, best-effort. Each push_profile()/remove_profile() call submits
  exactly one attempt to a small worker pool and returns immediately. There
  are no retries; drift is left to an operator or a reconciliation job.

Error channel:
  A failed attempt is reported to the logger and nowhere else. The Future
  returned to the caller never raises from result() -- it resolves to True on
  success and False on failure, so callers that ignore it lose nothing and
  tests can wait on it.

Failures are logged at WARNING outside production and at DEBUG in production.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from auth.models import User
from replica.client import ReplicaClient

logger = logging.getLogger("eventdesk.replica")


def _done(value: bool) -> "Future[bool]":
    fut: Future[bool] = Future()
    fut.set_result(value)
    return fut


class ProfileSync:
    def __init__(self, client: Optional[ReplicaClient], production: bool = False, max_workers: int = 2) -> None:
        self._client = client
        self._failure_level = logging.DEBUG if production else logging.WARNING
        self._executor = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="replica-sync") if client else None
        )

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def push_profile(self, user: User) -> "Future[bool]":
        """Upsert the user's profile in the secondary store."""
        return self._submit("upsert", user.id, lambda c: c.upsert_user(user))

    def remove_profile(self, user_id: str) -> "Future[bool]":
        return self._submit("delete", user_id, lambda c: c.delete_user(user_id))

    def _submit(self, action: str, user_id: str, call: Callable[[ReplicaClient], object]) -> "Future[bool]":
        if self._client is None or self._executor is None:
            logger.debug("Replica sync disabled; skipping %s for user %s", action, user_id)
            return _done(False)
        client = self._client
        try:
            return self._executor.submit(self._attempt, action, user_id, call, client)
        except RuntimeError:
            # Executor already shut down (process is stopping).
            logger.log(self._failure_level, "Replica %s for user %s dropped: dispatcher stopped", action, user_id)
            return _done(False)

    def _attempt(
        self,
        action: str,
        user_id: str,
        call: Callable[[ReplicaClient], object],
        client: ReplicaClient,
    ) -> bool:
        try:
            call(client)
        except Exception as e:
            logger.log(self._failure_level, "Replica %s failed for user %s: %s", action, user_id, e)
            return False
        logger.debug("Replica %s succeeded for user %s", action, user_id)
        return True

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
        if self._client is not None:
            self._client.close()
