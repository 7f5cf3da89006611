"""
Governance error taxonomy and async retry helper

Validation errors are raised before any state mutation and carry a stable
error code so callers can render distinct guidance. The retry helper is
used for best-effort calls to external collaborators (the audit log).
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Tuple

from aiohttp import ClientError, ClientResponseError

logger = logging.getLogger(__name__)


class GovernanceError(Exception):
    """Base exception for governance errors"""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "GOVERNANCE_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


class GovernanceValidationError(GovernanceError):
    """A precondition failed; nothing was changed"""


class InsufficientBalanceError(GovernanceValidationError):
    def __init__(self, user_id: str, balance: Any, required: Any):
        super().__init__(
            f"Insufficient token balance for staking: {balance} < {required}",
            "INSUFFICIENT_BALANCE",
            {"user_id": user_id, "balance": str(balance), "required": str(required)}
        )


class InsufficientTrustScoreError(GovernanceValidationError):
    def __init__(self, user_id: str, trust_score: float, required: float, tier: Optional[str] = None):
        if tier:
            message = f"Trust score {trust_score} insufficient for {tier} tier"
        else:
            message = f"Trust score {trust_score} insufficient (requires {required})"
        super().__init__(
            message,
            "INSUFFICIENT_TRUST_SCORE",
            {"user_id": user_id, "trust_score": trust_score, "required": required, "tier": tier}
        )


class InvalidAmountError(GovernanceValidationError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "INVALID_AMOUNT", details)


class StakeBelowMinimumError(GovernanceValidationError):
    def __init__(self, user_id: str, amount: Any, duration_days: int):
        super().__init__(
            f"Stake of {amount} for {duration_days} days is below the lowest tier minimum",
            "STAKE_BELOW_MINIMUM",
            {"user_id": user_id, "amount": str(amount), "duration_days": duration_days}
        )


class NotStakedError(GovernanceValidationError):
    def __init__(self, user_id: str):
        super().__init__(
            "Must have active stake to create proposals",
            "NOT_STAKED",
            {"user_id": user_id}
        )


class NoActiveStakeError(GovernanceValidationError):
    def __init__(self, user_id: str):
        super().__init__(f"No active stake found for {user_id}", "NO_ACTIVE_STAKE", {"user_id": user_id})


class AlreadyStakedError(GovernanceValidationError):
    def __init__(self, user_id: str):
        super().__init__(
            f"{user_id} already has an active stake; unstake before staking again",
            "ALREADY_STAKED",
            {"user_id": user_id}
        )


class ProposalNotFoundError(GovernanceValidationError):
    def __init__(self, proposal_id: str):
        super().__init__(f"Proposal not found: {proposal_id}", "PROPOSAL_NOT_FOUND", {"proposal_id": proposal_id})


class InvalidStateError(GovernanceValidationError):
    def __init__(self, proposal_id: str, status: Any, expected: Any):
        super().__init__(
            f"Proposal {proposal_id} is {getattr(status, 'value', status)}, expected {getattr(expected, 'value', expected)}",
            "INVALID_STATE",
            {
                "proposal_id": proposal_id,
                "status": getattr(status, "value", status),
                "expected": getattr(expected, "value", expected),
            }
        )


class AlreadyVotedError(GovernanceValidationError):
    def __init__(self, proposal_id: str, user_id: str):
        super().__init__(
            "User has already voted on this proposal",
            "ALREADY_VOTED",
            {"proposal_id": proposal_id, "user_id": user_id}
        )


class VotingStillOpenError(GovernanceValidationError):
    def __init__(self, proposal_id: str, voting_end_time: Any):
        super().__init__(
            f"Voting period has not ended (ends at {voting_end_time})",
            "VOTING_STILL_OPEN",
            {"proposal_id": proposal_id, "voting_end_time": str(voting_end_time)}
        )


class NotExecutableError(GovernanceValidationError):
    def __init__(self, proposal_id: str, status: Any):
        super().__init__(
            f"Proposal {proposal_id} cannot be executed (status: {getattr(status, 'value', status)})",
            "NOT_EXECUTABLE",
            {"proposal_id": proposal_id, "status": getattr(status, "value", status)}
        )


class VetoWindowClosedError(GovernanceValidationError):
    def __init__(self, proposal_id: str, deadline: Any):
        super().__init__(
            f"Veto window for {proposal_id} closed at {deadline}",
            "VETO_WINDOW_CLOSED",
            {"proposal_id": proposal_id, "deadline": str(deadline)}
        )




class AuditTransportError(GovernanceError):
    """Commit log unreachable, timed out or temporarily unavailable"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "AUDIT_TRANSPORT_ERROR", details)


class AuditRejectedError(GovernanceError):
    """Commit log refused the record; resubmitting it unchanged will not help"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "AUDIT_REJECTED", details)


# Ledger answers worth another attempt; other 4xx mean the envelope itself is bad
RETRYABLE_STATUSES = frozenset({408, 425, 429})


class ErrorHandler:
    """Retry policy for commit-log submissions"""

    @staticmethod
    def is_transient(error: BaseException) -> bool:
        if isinstance(error, ClientResponseError):
            return error.status >= 500 or error.status in RETRYABLE_STATUSES
        return isinstance(error, (ClientError, asyncio.TimeoutError, ConnectionError))

    @staticmethod
    async def handle_async_operation(
        operation: Callable,
        *args,
        operation_name: str = "operation",
        max_retries: int = 0,
        retry_delay: float = 1.0,
        **kwargs
    ) -> Tuple[bool, Any]:
        """
        Run a commit-log call, retrying transport failures with back-off.

        A failure that is not transient (a 4xx answer, an adapter bug) is
        returned after the first attempt.

        Args:
            operation: Async function to execute
            operation_name: Name for logging
            max_retries: Retries allowed after the first transport failure
            retry_delay: Delay before the first retry, doubled each attempt

        Returns:
            Tuple of (success, result_or_error)
        """
        attempt = 0
        while True:
            try:
                return True, await operation(*args, **kwargs)
            except Exception as e:
                if not ErrorHandler.is_transient(e):
                    logger.error(f"{operation_name} rejected: {type(e).__name__}: {e}")
                    return False, AuditRejectedError(
                        f"{operation_name} rejected: {e}", {"attempts": attempt + 1}
                    )
                if attempt >= max_retries:
                    return False, AuditTransportError(
                        f"{operation_name} failed: {e}", {"attempts": attempt + 1}
                    )
                delay = retry_delay * (2 ** attempt)
                attempt += 1
                logger.warning(f"{operation_name} transport error: {e} (retry {attempt}/{max_retries} in {delay}s)")
                await asyncio.sleep(delay)

    @staticmethod
    def log_error(error: Exception, context: str = "", level: str = "error") -> None:
        """Log error with consistent format"""
        log_func = getattr(logger, level, logger.error)

        if isinstance(error, GovernanceError):
            log_func(f"[{context}] {error.error_code}: {error.message}")
        else:
            log_func(f"[{context}] {type(error).__name__}: {error}")
