"""
Governance Engine for OmeoneChain

Provides staking-based governance for the recommendation network:
- Tiered staking with early-exit penalty
- Proposal lifecycle and reputation-weighted voting
- Timelocked execution with veto window
- Progressive decentralization milestones
"""

from .models import (
    ExecutionParameters,
    GovernanceStats,
    JobStatus,
    Milestone,
    Proposal,
    ProposalDraft,
    ProposalStatus,
    ProposalType,
    ScheduledExecution,
    Stake,
    StakingRequirements,
    StakingTier,
    TierRequirements,
    UnstakeReceipt,
    VetoVote,
    Vote,
    VoteType,
    VotingResult,
)
from .adapters import (
    CommitLog,
    ContentStore,
    HttpCommitLog,
    InMemoryCommitLog,
    InMemoryContentStore,
    InMemoryTokenLedger,
    ReputationSource,
    StaticReputationSource,
    TokenLedger,
)
from .errors import GovernanceError, GovernanceValidationError
from .storage import GovernanceStore, InMemoryGovernanceStore, JsonFileGovernanceStore
from .execution import ExecutionEngine, ExecutionResult
from .engine import GovernanceEngine
from .config import GovernanceConfig

__all__ = [
    'ExecutionParameters',
    'GovernanceStats',
    'JobStatus',
    'Milestone',
    'Proposal',
    'ProposalDraft',
    'ProposalStatus',
    'ProposalType',
    'ScheduledExecution',
    'Stake',
    'StakingRequirements',
    'StakingTier',
    'TierRequirements',
    'UnstakeReceipt',
    'VetoVote',
    'Vote',
    'VoteType',
    'VotingResult',
    'CommitLog',
    'ContentStore',
    'HttpCommitLog',
    'InMemoryCommitLog',
    'InMemoryContentStore',
    'InMemoryTokenLedger',
    'ReputationSource',
    'StaticReputationSource',
    'TokenLedger',
    'GovernanceError',
    'GovernanceValidationError',
    'GovernanceStore',
    'InMemoryGovernanceStore',
    'JsonFileGovernanceStore',
    'ExecutionEngine',
    'ExecutionResult',
    'GovernanceEngine',
    'GovernanceConfig'
]
