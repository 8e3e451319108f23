"""Best-effort activity (audit) recording."""

import logging
from typing import Any

from nebula.core.logging_safety import best_effort, safe_log_identifier
from nebula.repositories.memory import InMemoryStore

logger = logging.getLogger(__name__)


class ActivityRecorder:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def record(
        self,
        action: str,
        *,
        tenant_id: str | None = None,
        user_id: str | None = None,
        **details: Any,
    ) -> None:
        """Append an activity entry; a failed write never fails the caller."""
        with best_effort(
            logger,
            "activity.record",
            action=action,
            tenant_id=safe_log_identifier(tenant_id, prefix="tid"),
        ):
            self._store.record_activity(action=action, details=details, tenant_id=tenant_id, user_id=user_id)
