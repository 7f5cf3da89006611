"""
Best-effort audit trail over the commit log

Governance state is authoritative once applied; the audit write never fails
the operation that produced it. Records that cannot be delivered after the
configured retries are parked in the store's outbox and replayed by
`flush()`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .adapters import CommitLog
from .config import GovernanceConfig
from .errors import ErrorHandler
from .storage import GovernanceStore

logger = logging.getLogger(__name__)


AUDIT_TYPES = (
    "governance_stake",
    "governance_unstake",
    "governance_proposal",
    "governance_activate",
    "governance_vote",
    "governance_result",
    "governance_executed",
    "governance_milestone",
)

_SEQUENCE_KEY = "audit_sequence"


class AuditTrail:
    """Emits `{type, data, sequence, emittedAt}` envelopes to the commit log"""

    def __init__(
        self,
        commit_log: CommitLog,
        store: GovernanceStore,
        config: Optional[GovernanceConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.commit_log = commit_log
        self.store = store
        self.config = config or GovernanceConfig.default()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sequence: int = int(store.get_meta(_SEQUENCE_KEY, 0))

    @property
    def last_sequence(self) -> int:
        return self._sequence

    def _next_envelope(self, record_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._sequence += 1
        self.store.set_meta(_SEQUENCE_KEY, self._sequence)
        return {
            "type": record_type,
            "data": data,
            "sequence": self._sequence,
            "emittedAt": self._clock().isoformat(),
        }

    async def _deliver(self, envelope: Dict[str, Any]) -> bool:
        success, result = await ErrorHandler.handle_async_operation(
            self.commit_log.submit_transaction,
            envelope,
            operation_name=f"audit {envelope['type']}#{envelope['sequence']}",
            max_retries=self.config.AUDIT_MAX_RETRIES,
            retry_delay=self.config.AUDIT_RETRY_DELAY,
        )
        if not success:
            ErrorHandler.log_error(result, context="audit", level="warning")
        return success

    async def emit(self, record_type: str, data: Dict[str, Any]) -> bool:
        """
        Submit one audit record.

        Returns:
            True if the commit log accepted it, False if it was parked in the outbox
        """
        if record_type not in AUDIT_TYPES:
            raise ValueError(f"Unknown audit record type: {record_type}")

        envelope = self._next_envelope(record_type, data)
        if await self._deliver(envelope):
            return True

        self.store.push_audit(envelope)
        logger.warning(
            f"Audit record {record_type}#{envelope['sequence']} parked in outbox"
        )
        return False

    def pending(self) -> List[Dict[str, Any]]:
        return self.store.list_audit_outbox()

    async def flush(self) -> int:
        """Replay parked records in sequence order; stops at the first failure"""
        delivered = 0
        for envelope in sorted(self.pending(), key=lambda r: r["sequence"]):
            if not await self._deliver(envelope):
                break
            self.store.remove_audit(envelope["sequence"])
            delivered += 1

        if delivered:
            logger.info(f"Flushed {delivered} audit records from outbox")
        return delivered
