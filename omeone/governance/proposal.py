"""
Proposal Management Module for Governance System

Proposal lifecycle: DRAFT -> ACTIVE -> PASSED/REJECTED, then
PASSED -> EXECUTED/VETOED, with EXPIRED reachable by operator action.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .adapters import ContentStore
from .audit import AuditTrail
from .config import GovernanceConfig
from .errors import (
    InsufficientTrustScoreError,
    InvalidStateError,
    NotExecutableError,
    NotStakedError,
    ProposalNotFoundError,
    VotingStillOpenError,
)
from .execution import ExecutionEngine
from .locks import KeyedLock
from .models import (
    JobStatus,
    Proposal,
    ProposalDraft,
    ProposalStatus,
    VotingResult,
    can_transition,
)
from .staking import StakingManager
from .storage import GovernanceStore
from .timelock import ExecutionScheduler
from .voting import VotingManager

logger = logging.getLogger(__name__)


class ProposalManager:
    """
    Manages governance proposals from draft to execution

    Features:
    - Stake and trust gated creation with large-body offload
    - Fixed-length voting window
    - Finalization with durable deferred execution
    - Veto check and per-type dispatch on execution
    """

    def __init__(
        self,
        config: GovernanceConfig,
        store: GovernanceStore,
        staking: StakingManager,
        voting: VotingManager,
        execution: ExecutionEngine,
        scheduler: ExecutionScheduler,
        content_store: ContentStore,
        audit: AuditTrail,
        locks: KeyedLock,
        clock: Callable[[], datetime],
    ):
        self.config = config
        self.store = store
        self.staking = staking
        self.voting = voting
        self.execution = execution
        self.scheduler = scheduler
        self.content_store = content_store
        self.audit = audit
        self.locks = locks
        self._clock = clock
        logger.info("ProposalManager initialized")

    def _get(self, proposal_id: str) -> Proposal:
        proposal = self.store.get_proposal(proposal_id)
        if not proposal:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    @staticmethod
    def _transition(proposal: Proposal, new_status: ProposalStatus) -> None:
        if not can_transition(proposal.status, new_status):
            raise InvalidStateError(proposal.id, proposal.status, new_status)
        proposal.status = new_status

    # ===== Creation =====

    async def create_proposal(self, draft: ProposalDraft) -> str:
        """
        Create a DRAFT proposal

        Returns:
            The new proposal id

        Raises:
            NotStakedError: Author has no active stake
            InsufficientTrustScoreError: Author trust below the draft's minimum
        """
        if not self.staking.get_active_stake(draft.author):
            raise NotStakedError(draft.author)

        trust_score = await self.staking.reputation.get_trust_score(draft.author)
        required = draft.staking_requirements.min_trust_score
        if trust_score < required:
            raise InsufficientTrustScoreError(draft.author, trust_score, required)

        proposal = Proposal(
            id=f"prop_{uuid.uuid4().hex[:16]}",
            author=draft.author,
            title=draft.title,
            description=draft.description,
            proposal_type=draft.proposal_type,
            status=ProposalStatus.DRAFT,
            created_at=self._clock(),
            required_quorum=draft.required_quorum,
            required_majority=draft.required_majority,
            author_reputation_at_creation=trust_score,
            staking_requirements=draft.staking_requirements,
            execution_parameters=draft.execution_parameters,
            impact=draft.impact,
            tags=list(draft.tags),
        )

        if len(draft.description) > self.config.CONTENT_OFFLOAD_THRESHOLD:
            proposal.content_hash = await self.content_store.store({
                "proposalId": proposal.id,
                "title": draft.title,
                "description": draft.description,
                "author": draft.author,
                "type": draft.proposal_type.value,
            })
            if self.config.CLEAR_OFFLOADED_DESCRIPTION:
                proposal.description = ""
            logger.debug(f"Offloaded description of {proposal.id} as {proposal.content_hash}")

        self.store.put_proposal(proposal)
        logger.info(f"Proposal created: {proposal.id} ({proposal.proposal_type.value}) by {draft.author}")

        await self.audit.emit("governance_proposal", {
            "proposalId": proposal.id,
            "author": proposal.author,
            "type": proposal.proposal_type.value,
            "contentHash": proposal.content_hash,
        })
        return proposal.id

    # ===== Voting window =====

    async def activate_proposal(self, proposal_id: str) -> Proposal:
        """Open the voting window on a DRAFT proposal"""
        async with self.locks.proposal(proposal_id):
            proposal = self._get(proposal_id)
            if proposal.status != ProposalStatus.DRAFT:
                raise InvalidStateError(proposal_id, proposal.status, ProposalStatus.DRAFT)

            now = self._clock()
            self._transition(proposal, ProposalStatus.ACTIVE)
            proposal.voting_start_time = now
            proposal.voting_end_time = now + timedelta(
                seconds=self.config.days(self.config.VOTING_PERIOD_DAYS)
            )
            self.store.put_proposal(proposal)

        logger.info(f"Proposal {proposal_id} activated for voting until {proposal.voting_end_time.isoformat()}")
        await self.audit.emit("governance_activate", {
            "proposalId": proposal_id,
            "votingStartTime": proposal.voting_start_time.isoformat(),
            "votingEndTime": proposal.voting_end_time.isoformat(),
        })
        return proposal

    async def finalize_proposal(self, proposal_id: str) -> VotingResult:
        """
        Close voting and decide the outcome

        A passing proposal gets an execution job due after its timelock.
        """
        async with self.locks.proposal(proposal_id):
            proposal = self._get(proposal_id)
            if proposal.status != ProposalStatus.ACTIVE:
                raise InvalidStateError(proposal_id, proposal.status, ProposalStatus.ACTIVE)
            if self._clock() < proposal.voting_end_time:
                raise VotingStillOpenError(proposal_id, proposal.voting_end_time)

            result = self.voting.calculate_result(proposal)
            if result.passed:
                self._transition(proposal, ProposalStatus.PASSED)
                job = self.scheduler.schedule(
                    proposal_id,
                    self.config.days(proposal.execution_parameters.timelock_days),
                )
                proposal.scheduled_job_id = job.id
            else:
                self._transition(proposal, ProposalStatus.REJECTED)
            self.store.put_proposal(proposal)

        logger.info(
            f"Proposal {proposal_id} {proposal.status.value}: "
            f"participation {result.participation_rate:.2%}, yes {result.yes_votes:.4f}, no {result.no_votes:.4f}"
        )
        await self.audit.emit("governance_result", {
            "proposalId": proposal_id,
            "status": proposal.status.value,
            "result": result.to_dict(),
        })
        return result

    # ===== Execution =====

    def _settle_job(self, proposal: Proposal, error: Optional[str]) -> None:
        if not proposal.scheduled_job_id:
            return
        job = self.scheduler.get_job(proposal.scheduled_job_id)
        if not job or job.status in (JobStatus.COMPLETED, JobStatus.CANCELED):
            return
        if proposal.status != ProposalStatus.PASSED:
            self.scheduler.mark_completed(job)
        elif job.is_due(self._clock()):
            self.scheduler.mark_failed(job, error)

    async def execute_proposal(self, proposal_id: str) -> ProposalStatus:
        """
        Execute a PASSED proposal, unless enough veto power blocks it

        Handler failures leave the proposal PASSED with `execution_error`
        set so it can be retried.

        Returns:
            The proposal status after the attempt
        """
        async with self.locks.proposal(proposal_id):
            proposal = self._get(proposal_id)
            if proposal.status != ProposalStatus.PASSED:
                raise NotExecutableError(proposal_id, proposal.status)

            veto_power = self.voting.veto_power(proposal_id)
            total_possible = self.staking.total_possible_voting_power()
            if veto_power > self.config.VETO_THRESHOLD * total_possible:
                self._transition(proposal, ProposalStatus.VETOED)
                self.store.put_proposal(proposal)
                self._settle_job(proposal, None)
                vetoed = True
            else:
                vetoed = False
                result = await self.execution.execute(proposal)
                if result.success:
                    self._transition(proposal, ProposalStatus.EXECUTED)
                    proposal.executed_at = self._clock()
                    proposal.execution_error = None
                else:
                    proposal.execution_error = result.detail
                self.store.put_proposal(proposal)
                self._settle_job(proposal, proposal.execution_error)

        if vetoed:
            logger.info(f"Proposal {proposal_id} vetoed ({veto_power:.4f} of {total_possible:.4f} possible)")
            await self.audit.emit("governance_result", {
                "proposalId": proposal_id,
                "status": ProposalStatus.VETOED.value,
                "vetoPower": veto_power,
            })
        elif proposal.status == ProposalStatus.EXECUTED:
            logger.info(f"Proposal {proposal_id} executed")
            await self.audit.emit("governance_executed", {
                "proposalId": proposal_id,
                "type": proposal.proposal_type.value,
                "detail": result.detail,
            })
        else:
            logger.warning(f"Proposal {proposal_id} execution failed, left PASSED for retry")
        return proposal.status

    async def expire_proposal(self, proposal_id: str) -> Proposal:
        """Move an ACTIVE or PASSED proposal to EXPIRED and drop its pending job"""
        async with self.locks.proposal(proposal_id):
            proposal = self._get(proposal_id)
            if proposal.status not in (ProposalStatus.ACTIVE, ProposalStatus.PASSED):
                raise InvalidStateError(proposal_id, proposal.status, "active|passed")
            self._transition(proposal, ProposalStatus.EXPIRED)
            self.store.put_proposal(proposal)
            if proposal.scheduled_job_id:
                self.scheduler.cancel(proposal.scheduled_job_id)

        logger.info(f"Proposal {proposal_id} expired")
        await self.audit.emit("governance_result", {
            "proposalId": proposal_id,
            "status": ProposalStatus.EXPIRED.value,
        })
        return proposal

    # ===== Queries =====

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        return self.store.get_proposal(proposal_id)

    def get_proposals_by_status(self, status: ProposalStatus) -> List[Proposal]:
        return self.store.list_proposals(status)

    def get_active_proposals(self) -> List[Proposal]:
        return self.store.list_proposals(ProposalStatus.ACTIVE)
