"""
Proposal Execution Engine for Governance System

Dispatches passed proposals to a handler per proposal type.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from .models import Proposal, ProposalType

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Outcome of a handler run"""
    success: bool
    detail: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


ExecutionHandler = Callable[[Proposal], Awaitable[ExecutionResult]]
"""Type alias for proposal-type handlers"""


async def _apply_parameter_change(proposal: Proposal) -> ExecutionResult:
    logger.info(f"Applying parameter change from {proposal.id}: {proposal.execution_parameters.payload}")
    return ExecutionResult(True, "parameter change recorded")


async def _apply_treasury_spend(proposal: Proposal) -> ExecutionResult:
    logger.info(f"Releasing treasury spend for {proposal.id}: {proposal.execution_parameters.payload}")
    return ExecutionResult(True, "treasury spend recorded")


async def _apply_protocol_upgrade(proposal: Proposal) -> ExecutionResult:
    logger.info(f"Scheduling protocol upgrade from {proposal.id}")
    return ExecutionResult(True, "protocol upgrade recorded")


async def _apply_governance_change(proposal: Proposal) -> ExecutionResult:
    logger.info(f"Applying governance change from {proposal.id}")
    return ExecutionResult(True, "governance change recorded")


async def _apply_emergency_action(proposal: Proposal) -> ExecutionResult:
    logger.warning(f"Executing emergency action from {proposal.id}")
    return ExecutionResult(True, "emergency action recorded")


def default_handlers() -> Dict[ProposalType, ExecutionHandler]:
    """Logging handlers; integrators replace them with real effects"""
    return {
        ProposalType.PARAMETER_CHANGE: _apply_parameter_change,
        ProposalType.TREASURY_SPEND: _apply_treasury_spend,
        ProposalType.PROTOCOL_UPGRADE: _apply_protocol_upgrade,
        ProposalType.GOVERNANCE_CHANGE: _apply_governance_change,
        ProposalType.EMERGENCY_ACTION: _apply_emergency_action,
    }


class ExecutionEngine:
    """
    Executes passed proposals by type

    Features:
    - One handler per proposal type, replaceable at runtime
    - Handler failures are captured, never raised to the caller
    """

    def __init__(self, handlers: Optional[Dict[ProposalType, ExecutionHandler]] = None):
        self.handlers: Dict[ProposalType, ExecutionHandler] = default_handlers()
        if handlers:
            self.handlers.update(handlers)
        logger.info("ExecutionEngine initialized")

    def register_handler(self, proposal_type: ProposalType, handler: ExecutionHandler) -> None:
        """
        Register an execution handler for a proposal type

        Args:
            proposal_type: Type the handler applies to
            handler: Async function(proposal) -> ExecutionResult
        """
        self.handlers[proposal_type] = handler
        logger.info(f"Registered execution handler for {proposal_type.value}")

    async def execute(self, proposal: Proposal) -> ExecutionResult:
        """
        Run the handler for the proposal's type

        Returns:
            ExecutionResult; success=False if the handler raised or reported failure
        """
        handler = self.handlers.get(proposal.proposal_type)
        if not handler:
            result = ExecutionResult(False, f"No handler registered for {proposal.proposal_type.value}")
            logger.error(result.detail)
        else:
            try:
                result = await handler(proposal)
            except Exception as e:
                logger.exception(f"Execution failed for proposal {proposal.id}")
                result = ExecutionResult(False, f"{type(e).__name__}: {e}")

        if not result.success:
            logger.warning(f"Handler for {proposal.id} reported failure: {result.detail}")
        return result
