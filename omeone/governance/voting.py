"""
Voting Management Module for Governance System

Weighted vote casting, result tallying and veto votes on passed proposals.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Union

from .audit import AuditTrail
from .config import GovernanceConfig
from .errors import (
    AlreadyVotedError,
    InvalidStateError,
    ProposalNotFoundError,
    VetoWindowClosedError,
)
from .locks import KeyedLock
from .models import (
    Proposal,
    ProposalStatus,
    StakingTier,
    TierTally,
    VetoVote,
    Vote,
    VoteType,
    VotingResult,
)
from .staking import StakingManager
from .storage import GovernanceStore

logger = logging.getLogger(__name__)


class VotingManager:
    """
    Manages voting for governance proposals

    Features:
    - One vote per user per proposal, power fixed at cast time
    - Quorum against total active stake, majority excluding abstains
    - Voter breakdown by tier and reputation bucket
    - Veto votes during the post-voting veto window
    """

    def __init__(
        self,
        config: GovernanceConfig,
        store: GovernanceStore,
        staking: StakingManager,
        audit: AuditTrail,
        locks: KeyedLock,
        clock: Callable[[], datetime],
    ):
        self.config = config
        self.store = store
        self.staking = staking
        self.audit = audit
        self.locks = locks
        self._clock = clock
        logger.info("VotingManager initialized")

    def _get_proposal(self, proposal_id: str) -> Proposal:
        proposal = self.store.get_proposal(proposal_id)
        if not proposal:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    def _check_can_vote(self, proposal_id: str, user_id: str) -> Proposal:
        proposal = self._get_proposal(proposal_id)
        if proposal.status != ProposalStatus.ACTIVE:
            raise InvalidStateError(proposal_id, proposal.status, ProposalStatus.ACTIVE)
        if any(v.voter == user_id for v in self.store.list_votes(proposal_id)):
            raise AlreadyVotedError(proposal_id, user_id)
        return proposal

    async def vote_on_proposal(
        self,
        proposal_id: str,
        user_id: str,
        vote_type: Union[VoteType, str],
        reason: Optional[str] = None,
    ) -> Vote:
        """
        Cast a vote on an active proposal

        Args:
            proposal_id: Target proposal
            user_id: Voter
            vote_type: YES, NO or ABSTAIN
            reason: Optional free-text justification

        Returns:
            Vote record

        Raises:
            ProposalNotFoundError, InvalidStateError, AlreadyVotedError
        """
        vote_type = VoteType(vote_type)
        self._check_can_vote(proposal_id, user_id)

        trust_score = await self.staking.reputation.get_trust_score(user_id)

        async with self.locks.proposal(proposal_id):
            self._check_can_vote(proposal_id, user_id)

            # Power and the stake snapshot come from the same read
            stake = self.staking.get_active_stake(user_id)
            voting_power = self.staking.power_for_stake(stake, trust_score)
            vote = Vote(
                id=f"vote_{uuid.uuid4().hex[:16]}",
                proposal_id=proposal_id,
                voter=user_id,
                vote_type=vote_type,
                voting_power=voting_power,
                reputation_at_vote=trust_score,
                stake_amount=stake.amount if stake else Decimal("0"),
                staking_tier=stake.tier if stake else StakingTier.EXPLORER,
                timestamp=self._clock(),
                reason=reason,
            )
            self.store.add_vote(vote)

        logger.info(f"Vote cast: {user_id} voted {vote_type.value} on {proposal_id} (power {voting_power:.4f})")
        await self.audit.emit("governance_vote", {
            "proposalId": proposal_id,
            "voter": user_id,
            "voteType": vote_type.value,
            "votingPower": voting_power,
        })
        return vote

    def calculate_result(self, proposal: Proposal) -> VotingResult:
        """Tally a proposal's votes against the current total possible power"""
        votes = self.store.list_votes(proposal.id)

        yes_votes = sum(v.voting_power for v in votes if v.vote_type == VoteType.YES)
        no_votes = sum(v.voting_power for v in votes if v.vote_type == VoteType.NO)
        abstain_votes = sum(v.voting_power for v in votes if v.vote_type == VoteType.ABSTAIN)
        total_voting_power = yes_votes + no_votes + abstain_votes

        total_possible = self.staking.total_possible_voting_power()
        participation_rate = total_voting_power / total_possible if total_possible > 0 else 0.0

        by_tier: Dict[StakingTier, TierTally] = {}
        by_reputation = {"high": 0, "medium": 0, "low": 0}
        for vote in votes:
            tally = by_tier.setdefault(vote.staking_tier, TierTally())
            tally.count += 1
            tally.power += vote.voting_power

            if vote.reputation_at_vote >= self.config.HIGH_REPUTATION:
                by_reputation["high"] += 1
            elif vote.reputation_at_vote >= self.config.MEDIUM_REPUTATION:
                by_reputation["medium"] += 1
            else:
                by_reputation["low"] += 1

        return VotingResult(
            proposal_id=proposal.id,
            total_voting_power=total_voting_power,
            yes_votes=yes_votes,
            no_votes=no_votes,
            abstain_votes=abstain_votes,
            participation_rate=participation_rate,
            quorum_reached=participation_rate >= proposal.required_quorum,
            # Abstains count toward quorum only
            majority_achieved=yes_votes > (yes_votes + no_votes) * proposal.required_majority,
            by_tier=by_tier,
            by_reputation=by_reputation,
        )

    # ===== Veto =====

    def _check_can_veto(self, proposal_id: str, user_id: str) -> Proposal:
        proposal = self._get_proposal(proposal_id)
        if proposal.status != ProposalStatus.PASSED:
            raise InvalidStateError(proposal_id, proposal.status, ProposalStatus.PASSED)
        deadline = proposal.veto_deadline(self.config.DAY_SECONDS)
        if self._clock() >= deadline:
            raise VetoWindowClosedError(proposal_id, deadline)
        if any(v.voter == user_id for v in self.store.list_vetoes(proposal_id)):
            raise AlreadyVotedError(proposal_id, user_id)
        return proposal

    async def veto_proposal(self, proposal_id: str, user_id: str, reason: Optional[str] = None) -> VetoVote:
        """
        Cast a veto against a passed proposal inside its veto window

        Veto power uses the same formula as regular votes. Whether the
        vetoes block execution is decided when the proposal is executed.
        """
        self._check_can_veto(proposal_id, user_id)
        voting_power = await self.staking.calculate_voting_power(user_id)

        async with self.locks.proposal(proposal_id):
            self._check_can_veto(proposal_id, user_id)
            veto = VetoVote(
                id=f"veto_{uuid.uuid4().hex[:16]}",
                proposal_id=proposal_id,
                voter=user_id,
                voting_power=voting_power,
                timestamp=self._clock(),
                reason=reason,
            )
            self.store.add_veto(veto)

        logger.info(f"Veto cast: {user_id} on {proposal_id} (power {voting_power:.4f})")
        await self.audit.emit("governance_vote", {
            "proposalId": proposal_id,
            "voter": user_id,
            "voteType": "veto",
            "votingPower": voting_power,
        })
        return veto

    def veto_power(self, proposal_id: str) -> float:
        """Total power of vetoes cast within the proposal's veto window"""
        proposal = self._get_proposal(proposal_id)
        deadline = proposal.veto_deadline(self.config.DAY_SECONDS)
        if deadline is None:
            return 0.0
        return sum(
            v.voting_power for v in self.store.list_vetoes(proposal_id)
            if v.timestamp < deadline
        )

    # ===== Queries =====

    def get_proposal_votes(self, proposal_id: str) -> List[Vote]:
        """Get all votes for a specific proposal"""
        return self.store.list_votes(proposal_id)

    def get_voter_history(self, voter: str) -> List[Vote]:
        """Get all votes cast by a voter"""
        all_votes = [v for v in self.store.all_votes() if v.voter == voter]
        return sorted(all_votes, key=lambda v: v.timestamp)

    def unique_voters(self) -> int:
        return len({v.voter for v in self.store.all_votes()})
