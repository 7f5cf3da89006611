"""
Data models for the Governance Engine
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class StakingTier(Enum):
    """Staking brackets, ascending"""
    EXPLORER = "explorer"
    CURATOR = "curator"
    PASSPORT = "passport"
    VALIDATOR_DELEGATE = "validator_delegate"


class ProposalType(Enum):
    """Types of proposals"""
    PARAMETER_CHANGE = "parameter_change"
    TREASURY_SPEND = "treasury_spend"
    PROTOCOL_UPGRADE = "protocol_upgrade"
    GOVERNANCE_CHANGE = "governance_change"
    EMERGENCY_ACTION = "emergency_action"


class ProposalStatus(Enum):
    """Proposal lifecycle statuses"""
    DRAFT = "draft"
    ACTIVE = "active"
    PASSED = "passed"
    REJECTED = "rejected"
    EXECUTED = "executed"
    EXPIRED = "expired"
    VETOED = "vetoed"


class VoteType(Enum):
    """Vote options"""
    YES = "yes"
    NO = "no"
    ABSTAIN = "abstain"


class JobStatus(Enum):
    """Status of a scheduled execution"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({
    ProposalStatus.REJECTED,
    ProposalStatus.EXECUTED,
    ProposalStatus.EXPIRED,
    ProposalStatus.VETOED,
})

_VALID_TRANSITIONS: Dict[ProposalStatus, frozenset] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.ACTIVE}),
    ProposalStatus.ACTIVE: frozenset({
        ProposalStatus.PASSED, ProposalStatus.REJECTED, ProposalStatus.EXPIRED
    }),
    ProposalStatus.PASSED: frozenset({
        ProposalStatus.EXECUTED, ProposalStatus.VETOED, ProposalStatus.EXPIRED
    }),
}


def can_transition(current: ProposalStatus, new: ProposalStatus) -> bool:
    """Check a proposal status transition against the lifecycle table"""
    return new in _VALID_TRANSITIONS.get(current, frozenset())


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class TierRequirements:
    """Minimums a stake must meet to land in a tier"""
    min_tokens: Decimal
    min_duration_days: int
    trust_score_minimum: float
    privileges: tuple = ()

    def is_satisfied_by(self, amount: Decimal, duration_days: int, trust_score: float) -> bool:
        return (
            amount >= self.min_tokens
            and duration_days >= self.min_duration_days
            and trust_score >= self.trust_score_minimum
        )


@dataclass
class Stake:
    """A user's governance stake (at most one active per user)"""
    user_id: str
    amount: Decimal
    tier: StakingTier
    staked_at: datetime
    lock_duration_days: int
    is_active: bool = True
    unstaked_at: Optional[datetime] = None
    penalty_burned: Optional[Decimal] = None

    def lock_expires_at(self, day_seconds: int = 86400) -> datetime:
        return self.staked_at + timedelta(seconds=self.lock_duration_days * day_seconds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "amount": str(self.amount),
            "tier": self.tier.value,
            "stakedAt": self.staked_at.isoformat(),
            "lockDuration": self.lock_duration_days,
            "isActive": self.is_active,
            "unstakedAt": _dt(self.unstaked_at),
            "penaltyBurned": str(self.penalty_burned) if self.penalty_burned is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stake":
        return cls(
            user_id=data["userId"],
            amount=Decimal(data["amount"]),
            tier=StakingTier(data["tier"]),
            staked_at=datetime.fromisoformat(data["stakedAt"]),
            lock_duration_days=int(data["lockDuration"]),
            is_active=data.get("isActive", True),
            unstaked_at=_parse_dt(data.get("unstakedAt")),
            penalty_burned=Decimal(data["penaltyBurned"]) if data.get("penaltyBurned") else None,
        )


@dataclass(frozen=True)
class UnstakeReceipt:
    """Outcome of an unstake: what was burned and what went back to the user"""
    user_id: str
    amount: Decimal
    penalty: Decimal
    returned: Decimal
    early: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "amount": str(self.amount),
            "penalty": str(self.penalty),
            "returned": str(self.returned),
            "early": self.early,
        }


@dataclass
class StakingRequirements:
    min_trust_score: float = 0.0
    min_stake_to_propose: Decimal = Decimal("0")
    required_tier: Optional[StakingTier] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minTrustScore": self.min_trust_score,
            "minStakeToPropose": str(self.min_stake_to_propose),
            "requiredTier": self.required_tier.value if self.required_tier else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StakingRequirements":
        tier = data.get("requiredTier")
        return cls(
            min_trust_score=float(data.get("minTrustScore", 0.0)),
            min_stake_to_propose=Decimal(data.get("minStakeToPropose", "0")),
            required_tier=StakingTier(tier) if tier else None,
        )


@dataclass
class ExecutionParameters:
    """Timelock and veto window (days) plus a type-specific payload"""
    timelock_days: float = 7
    veto_window_days: float = 3
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timelock": self.timelock_days,
            "vetoWindow": self.veto_window_days,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionParameters":
        return cls(
            timelock_days=data.get("timelock", 7),
            veto_window_days=data.get("vetoWindow", 3),
            payload=data.get("payload", {}),
        )


@dataclass
class ProposalDraft:
    """Caller input for creating a proposal"""
    author: str
    title: str
    description: str
    proposal_type: ProposalType
    required_quorum: float = 0.2
    required_majority: float = 0.5
    staking_requirements: StakingRequirements = field(default_factory=StakingRequirements)
    execution_parameters: ExecutionParameters = field(default_factory=ExecutionParameters)
    impact: str = "medium"
    tags: List[str] = field(default_factory=list)


@dataclass
class Proposal:
    """Governance proposal"""
    id: str
    author: str
    title: str
    description: str
    proposal_type: ProposalType
    status: ProposalStatus
    created_at: datetime
    required_quorum: float
    required_majority: float
    author_reputation_at_creation: float
    staking_requirements: StakingRequirements = field(default_factory=StakingRequirements)
    execution_parameters: ExecutionParameters = field(default_factory=ExecutionParameters)
    content_hash: Optional[str] = None
    voting_start_time: Optional[datetime] = None
    voting_end_time: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    execution_error: Optional[str] = None
    scheduled_job_id: Optional[str] = None
    impact: str = "medium"
    tags: List[str] = field(default_factory=list)

    def veto_deadline(self, day_seconds: int = 86400) -> Optional[datetime]:
        if not self.voting_end_time:
            return None
        window = self.execution_parameters.veto_window_days * day_seconds
        return self.voting_end_time + timedelta(seconds=window)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "title": self.title,
            "description": self.description,
            "type": self.proposal_type.value,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "requiredQuorum": self.required_quorum,
            "requiredMajority": self.required_majority,
            "authorReputationAtCreation": self.author_reputation_at_creation,
            "stakingRequirements": self.staking_requirements.to_dict(),
            "executionParameters": self.execution_parameters.to_dict(),
            "contentHash": self.content_hash,
            "votingStartTime": _dt(self.voting_start_time),
            "votingEndTime": _dt(self.voting_end_time),
            "executedAt": _dt(self.executed_at),
            "executionError": self.execution_error,
            "scheduledJobId": self.scheduled_job_id,
            "impact": self.impact,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proposal":
        return cls(
            id=data["id"],
            author=data["author"],
            title=data["title"],
            description=data.get("description", ""),
            proposal_type=ProposalType(data["type"]),
            status=ProposalStatus(data["status"]),
            created_at=datetime.fromisoformat(data["createdAt"]),
            required_quorum=float(data["requiredQuorum"]),
            required_majority=float(data["requiredMajority"]),
            author_reputation_at_creation=float(data["authorReputationAtCreation"]),
            staking_requirements=StakingRequirements.from_dict(data.get("stakingRequirements", {})),
            execution_parameters=ExecutionParameters.from_dict(data.get("executionParameters", {})),
            content_hash=data.get("contentHash"),
            voting_start_time=_parse_dt(data.get("votingStartTime")),
            voting_end_time=_parse_dt(data.get("votingEndTime")),
            executed_at=_parse_dt(data.get("executedAt")),
            execution_error=data.get("executionError"),
            scheduled_job_id=data.get("scheduledJobId"),
            impact=data.get("impact", "medium"),
            tags=list(data.get("tags", [])),
        )


@dataclass(frozen=True)
class Vote:
    """Individual vote record, immutable once cast"""
    id: str
    proposal_id: str
    voter: str
    vote_type: VoteType
    voting_power: float
    reputation_at_vote: float
    stake_amount: Decimal
    staking_tier: StakingTier
    timestamp: datetime
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "proposalId": self.proposal_id,
            "voter": self.voter,
            "voteType": self.vote_type.value,
            "votingPower": self.voting_power,
            "reputationAtVote": self.reputation_at_vote,
            "stakeAmount": str(self.stake_amount),
            "stakingTier": self.staking_tier.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vote":
        return cls(
            id=data["id"],
            proposal_id=data["proposalId"],
            voter=data["voter"],
            vote_type=VoteType(data["voteType"]),
            voting_power=float(data["votingPower"]),
            reputation_at_vote=float(data["reputationAtVote"]),
            stake_amount=Decimal(data["stakeAmount"]),
            staking_tier=StakingTier(data["stakingTier"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class VetoVote:
    """Opposition cast against a passed proposal during its veto window"""
    id: str
    proposal_id: str
    voter: str
    voting_power: float
    timestamp: datetime
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "proposalId": self.proposal_id,
            "voter": self.voter,
            "votingPower": self.voting_power,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VetoVote":
        return cls(
            id=data["id"],
            proposal_id=data["proposalId"],
            voter=data["voter"],
            voting_power=float(data["votingPower"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            reason=data.get("reason"),
        )


@dataclass
class TierTally:
    count: int = 0
    power: float = 0.0


@dataclass
class VotingResult:
    """Tally of a proposal's votes at finalization"""
    proposal_id: str
    total_voting_power: float
    yes_votes: float
    no_votes: float
    abstain_votes: float
    participation_rate: float
    quorum_reached: bool
    majority_achieved: bool
    by_tier: Dict[StakingTier, TierTally] = field(default_factory=dict)
    by_reputation: Dict[str, int] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.quorum_reached and self.majority_achieved

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "totalVotingPower": self.total_voting_power,
            "yesVotes": self.yes_votes,
            "noVotes": self.no_votes,
            "abstainVotes": self.abstain_votes,
            "participationRate": self.participation_rate,
            "quorumReached": self.quorum_reached,
            "majorityAchieved": self.majority_achieved,
            "passed": self.passed,
            "voterBreakdown": {
                "byTier": {
                    tier.value: {"count": tally.count, "power": tally.power}
                    for tier, tally in self.by_tier.items()
                },
                "byReputation": dict(self.by_reputation),
            },
        }


@dataclass
class Milestone:
    """Decentralization checkpoint; achieved is irreversible"""
    name: str
    description: str
    requirements: Dict[str, float]
    unlocks: List[str] = field(default_factory=list)
    achieved: bool = False
    achieved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "requirements": dict(self.requirements),
            "unlocks": list(self.unlocks),
            "achieved": self.achieved,
            "achievedAt": _dt(self.achieved_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            requirements=dict(data.get("requirements", {})),
            unlocks=list(data.get("unlocks", [])),
            achieved=data.get("achieved", False),
            achieved_at=_parse_dt(data.get("achievedAt")),
        )


@dataclass
class ScheduledExecution:
    """A persisted due-at record for deferred proposal execution"""
    id: str
    proposal_id: str
    due_at: datetime
    created_at: datetime
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None

    def is_due(self, now: datetime) -> bool:
        return self.status == JobStatus.PENDING and now >= self.due_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "proposalId": self.proposal_id,
            "dueAt": self.due_at.isoformat(),
            "createdAt": self.created_at.isoformat(),
            "status": self.status.value,
            "attempts": self.attempts,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledExecution":
        return cls(
            id=data["id"],
            proposal_id=data["proposalId"],
            due_at=datetime.fromisoformat(data["dueAt"]),
            created_at=datetime.fromisoformat(data["createdAt"]),
            status=JobStatus(data.get("status", "pending")),
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("lastError"),
        )


@dataclass
class GovernanceStats:
    total_proposals: int
    active_proposals: int
    total_staked: Decimal
    unique_stakers: int
    total_voting_power: float
    milestones_achieved: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalProposals": self.total_proposals,
            "activeProposals": self.active_proposals,
            "totalStaked": str(self.total_staked),
            "uniqueStakers": self.unique_stakers,
            "totalVotingPower": self.total_voting_power,
            "milestonesAchieved": self.milestones_achieved,
        }
