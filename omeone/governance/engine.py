"""
Governance Engine - Main Integration Module

Single entry point over staking, proposals, voting, execution, milestones
and the audit trail.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .adapters import CommitLog, ContentStore, ReputationSource, TokenLedger
from .audit import AuditTrail
from .config import GovernanceConfig
from .errors import ErrorHandler, NotExecutableError, ProposalNotFoundError
from .execution import ExecutionEngine, ExecutionHandler
from .locks import KeyedLock
from .milestones import MetricProvider, MilestoneTracker
from .models import (
    GovernanceStats,
    Milestone,
    Proposal,
    ProposalDraft,
    ProposalStatus,
    ProposalType,
    Stake,
    StakingTier,
    UnstakeReceipt,
    VetoVote,
    Vote,
    VoteType,
    VotingResult,
)
from .proposal import ProposalManager
from .staking import StakingManager
from .storage import GovernanceStore, InMemoryGovernanceStore, JsonFileGovernanceStore
from .timelock import ExecutionScheduler
from .voting import VotingManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GovernanceEngine:
    """
    Main governance system integrating staking, proposals, voting and execution

    Features:
    - Tiered staking with early-exit penalty
    - Reputation-weighted, whale-capped voting
    - Durable timelocked execution with veto window
    - Milestone tracking for progressive decentralization
    - Best-effort audit trail to an external commit log
    """

    def __init__(
        self,
        ledger: TokenLedger,
        reputation: ReputationSource,
        commit_log: CommitLog,
        content_store: ContentStore,
        config: Optional[GovernanceConfig] = None,
        store: Optional[GovernanceStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or GovernanceConfig.default()
        if store is None:
            if self.config.DATA_DIR:
                store = JsonFileGovernanceStore(self.config.DATA_DIR)
            else:
                store = InMemoryGovernanceStore()
        self.store = store
        self._clock = clock or _utcnow

        self.ledger = ledger
        self.reputation = reputation
        self.commit_log = commit_log
        self.content_store = content_store

        # Sub-components
        self.locks = KeyedLock()
        self.audit = AuditTrail(commit_log, store, self.config, self._clock)
        self.staking = StakingManager(
            self.config, store, ledger, reputation, self.audit, self.locks, self._clock
        )
        self.voting = VotingManager(
            self.config, store, self.staking, self.audit, self.locks, self._clock
        )
        self.execution_engine = ExecutionEngine()
        self.scheduler = ExecutionScheduler(store, self._clock)
        self.proposals = ProposalManager(
            self.config, store, self.staking, self.voting, self.execution_engine,
            self.scheduler, content_store, self.audit, self.locks, self._clock,
        )
        self.milestones = MilestoneTracker(
            self.config, store, self.staking, self.voting, self.audit, self.locks, self._clock
        )

        # Background task
        self._processing_task: Optional[asyncio.Task] = None
        self._running = False

        logger.info("GovernanceEngine initialized")

    # ===== Staking =====

    async def stake_for_governance(self, user_id: str, amount: Any, lock_duration_days: int) -> Stake:
        return await self.staking.stake_for_governance(user_id, amount, lock_duration_days)

    async def unstake_tokens(self, user_id: str) -> UnstakeReceipt:
        return await self.staking.unstake_tokens(user_id)

    def determine_tier(self, amount: Any, duration_days: int, trust_score: float) -> StakingTier:
        return self.staking.determine_tier(Decimal(str(amount)), duration_days, trust_score)

    def tier_privileges(self, tier: StakingTier) -> Tuple[str, ...]:
        return self.staking.tier_privileges(tier)

    async def calculate_voting_power(self, user_id: str) -> float:
        return await self.staking.calculate_voting_power(user_id)

    def total_possible_voting_power(self) -> float:
        return self.staking.total_possible_voting_power()

    # ===== Proposal Lifecycle =====

    async def create_proposal(self, draft: ProposalDraft) -> str:
        return await self.proposals.create_proposal(draft)

    async def activate_proposal(self, proposal_id: str) -> Proposal:
        return await self.proposals.activate_proposal(proposal_id)

    async def finalize_proposal(self, proposal_id: str) -> VotingResult:
        return await self.proposals.finalize_proposal(proposal_id)

    async def execute_proposal(self, proposal_id: str) -> ProposalStatus:
        return await self.proposals.execute_proposal(proposal_id)

    async def expire_proposal(self, proposal_id: str) -> Proposal:
        return await self.proposals.expire_proposal(proposal_id)

    def register_handler(self, proposal_type: ProposalType, handler: ExecutionHandler) -> None:
        self.execution_engine.register_handler(proposal_type, handler)

    # ===== Voting =====

    async def vote_on_proposal(
        self,
        proposal_id: str,
        user_id: str,
        vote_type: Union[VoteType, str],
        reason: Optional[str] = None,
    ) -> Vote:
        return await self.voting.vote_on_proposal(proposal_id, user_id, vote_type, reason)

    async def veto_proposal(self, proposal_id: str, user_id: str, reason: Optional[str] = None) -> VetoVote:
        return await self.voting.veto_proposal(proposal_id, user_id, reason)

    def veto_power(self, proposal_id: str) -> float:
        return self.voting.veto_power(proposal_id)

    # ===== Milestones =====

    async def check_milestones(self) -> List[Milestone]:
        return await self.milestones.check_milestones()

    def register_metric(self, name: str, provider: MetricProvider) -> None:
        self.milestones.register_metric(name, provider)

    def get_milestones(self) -> List[Milestone]:
        return self.milestones.get_milestones()

    # ===== Queries =====

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        return self.proposals.get_proposal(proposal_id)

    def get_proposals_by_status(self, status: ProposalStatus) -> List[Proposal]:
        return self.proposals.get_proposals_by_status(status)

    def get_active_proposals(self) -> List[Proposal]:
        return self.proposals.get_active_proposals()

    def get_user_stake(self, user_id: str) -> Optional[Stake]:
        """Latest stake for the user, active or not"""
        return self.store.get_stake(user_id)

    async def get_user_voting_power(self, user_id: str) -> float:
        return await self.staking.calculate_voting_power(user_id)

    def get_proposal_votes(self, proposal_id: str) -> List[Vote]:
        return self.voting.get_proposal_votes(proposal_id)

    def get_voter_history(self, voter: str) -> List[Vote]:
        return self.voting.get_voter_history(voter)

    def get_governance_stats(self) -> GovernanceStats:
        """Aggregate counters across proposals, stakes and milestones"""
        proposals = self.store.list_proposals()
        return GovernanceStats(
            total_proposals=len(proposals),
            active_proposals=len([p for p in proposals if p.status == ProposalStatus.ACTIVE]),
            total_staked=self.staking.total_staked(),
            unique_stakers=self.staking.unique_stakers(),
            total_voting_power=self.staking.total_possible_voting_power(),
            milestones_achieved=len([m for m in self.get_milestones() if m.achieved]),
        )

    # ===== Audit =====

    async def flush_audit_outbox(self) -> int:
        return await self.audit.flush()

    # ===== Deferred execution =====

    async def run_due_executions(self) -> Dict[str, ProposalStatus]:
        """
        Attempt every scheduled execution whose timelock has elapsed

        Returns:
            proposal_id -> status after the attempt
        """
        outcomes: Dict[str, ProposalStatus] = {}
        for job in self.scheduler.due_jobs():
            try:
                outcomes[job.proposal_id] = await self.proposals.execute_proposal(job.proposal_id)
            except (NotExecutableError, ProposalNotFoundError) as e:
                ErrorHandler.log_error(e, context=f"job {job.id}", level="warning")
                self.scheduler.mark_failed(job, e.message)
        return outcomes

    async def start(self) -> None:
        """Start background execution of due proposals"""
        if self._running:
            return

        self._running = True
        self._processing_task = asyncio.create_task(self._processing_loop())
        logger.info("GovernanceEngine started")

    async def stop(self) -> None:
        """Stop background processing"""
        self._running = False
        if self._processing_task:
            self._processing_task.cancel()
            try:
                await self._processing_task
            except asyncio.CancelledError:
                pass
            self._processing_task = None
        logger.info("GovernanceEngine stopped")

    async def _processing_loop(self) -> None:
        """Background loop for scheduled executions and parked audit records"""
        while self._running:
            try:
                await self.run_due_executions()
                if self.audit.pending():
                    await self.audit.flush()
            except Exception:
                logger.exception("Error in governance processing loop")
            await asyncio.sleep(self.config.SCHEDULER_POLL_INTERVAL)
