"""
Governance Engine Configuration
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from dotenv import find_dotenv, load_dotenv

from .models import StakingTier, TierRequirements


def default_staking_tiers() -> Dict[StakingTier, TierRequirements]:
    return {
        StakingTier.EXPLORER: TierRequirements(
            min_tokens=Decimal("25"),
            min_duration_days=30,
            trust_score_minimum=0.3,
            privileges=("comment", "vote_basic"),
        ),
        StakingTier.CURATOR: TierRequirements(
            min_tokens=Decimal("100"),
            min_duration_days=90,
            trust_score_minimum=0.4,
            privileges=("comment", "vote_basic", "propose_basic", "list_royalties"),
        ),
        StakingTier.PASSPORT: TierRequirements(
            min_tokens=Decimal("500"),
            min_duration_days=180,
            trust_score_minimum=0.5,
            privileges=("comment", "vote_basic", "propose_basic", "ai_discount"),
        ),
        StakingTier.VALIDATOR_DELEGATE: TierRequirements(
            min_tokens=Decimal("1000"),
            min_duration_days=365,
            trust_score_minimum=0.6,
            privileges=(
                "comment", "vote_enhanced", "propose_advanced",
                "run_indexer", "multisig_candidate",
            ),
        ),
    }


def default_tier_multipliers() -> Dict[StakingTier, float]:
    # Validator delegates vote like passports; their extra privileges are non-voting
    return {
        StakingTier.EXPLORER: 1.0,
        StakingTier.CURATOR: 1.2,
        StakingTier.PASSPORT: 1.5,
        StakingTier.VALIDATOR_DELEGATE: 1.5,
    }


def default_milestones() -> List[Dict[str, Any]]:
    return [
        {
            "name": "Economic Stake",
            "description": "10% of total supply staked and 5,000 distinct voters",
            "requirements": {"totalStaked": 1_000_000_000, "uniqueVoters": 5000},
            "unlocks": ["Full treasury spend authority"],
        },
        {
            "name": "Network Scale",
            "description": "100k daily active wallets and $10M exchange liquidity",
            "requirements": {"dailyActiveUsers": 100_000, "exchangeLiquidity": 10_000_000},
            "unlocks": ["Fee parameters control", "Burn split adjustment"],
        },
        {
            "name": "Ecosystem Maturity",
            "description": "5 independent dApps live and 2 external audits completed",
            "requirements": {"independentDApps": 5, "securityAudits": 2},
            "unlocks": ["Multisig signer management", "Protocol parameter control"],
        },
    ]


@dataclass
class GovernanceConfig:
    """Configuration for the governance engine"""

    # Length of a governance "day" in seconds. Lock durations, voting
    # windows, timelocks and veto windows are all expressed in these days.
    DAY_SECONDS: int = 24 * 3600

    # Staking
    STAKING_TIERS: Optional[Dict[StakingTier, TierRequirements]] = None
    TIER_MULTIPLIERS: Optional[Dict[StakingTier, float]] = None
    EARLY_UNSTAKE_PENALTY: Decimal = Decimal("0.05")   # burned on early exit
    REJECT_BELOW_TIER_MINIMUM: bool = False            # False: fall back to EXPLORER

    # Voting
    VOTING_PERIOD_DAYS: float = 7
    TRUST_SCALE: float = 1000.0                        # trust [0,1] -> token magnitude
    VOTING_POWER_CAP: float = 0.03                     # of total possible power
    VETO_THRESHOLD: float = 0.10                       # of total possible power
    HIGH_REPUTATION: float = 0.7
    MEDIUM_REPUTATION: float = 0.4

    # Proposals
    CONTENT_OFFLOAD_THRESHOLD: int = 1000              # description chars
    CLEAR_OFFLOADED_DESCRIPTION: bool = False

    # Milestones
    MILESTONES: Optional[List[Dict[str, Any]]] = None

    # Audit trail
    AUDIT_MAX_RETRIES: int = 2
    AUDIT_RETRY_DELAY: float = 0.5                     # seconds, doubled per attempt

    # Scheduled execution worker
    SCHEDULER_POLL_INTERVAL: float = 60.0              # seconds

    # Durable store location (None keeps state in memory)
    DATA_DIR: Optional[str] = None

    def __post_init__(self):
        if self.STAKING_TIERS is None:
            self.STAKING_TIERS = default_staking_tiers()
        if self.TIER_MULTIPLIERS is None:
            self.TIER_MULTIPLIERS = default_tier_multipliers()
        if self.MILESTONES is None:
            self.MILESTONES = default_milestones()

    def days(self, n: float) -> float:
        """Convert governance days to seconds"""
        return n * self.DAY_SECONDS

    @classmethod
    def default(cls) -> 'GovernanceConfig':
        """Get default configuration"""
        return cls()

    @classmethod
    def accelerated(cls, day_seconds: int = 1) -> 'GovernanceConfig':
        """Get a configuration where a governance day lasts `day_seconds`"""
        return cls(
            DAY_SECONDS=day_seconds,
            AUDIT_RETRY_DELAY=0.0,
            SCHEDULER_POLL_INTERVAL=0.05,
        )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'GovernanceConfig':
        """
        Build configuration from GOVERNANCE_* environment variables

        A .env file is loaded first (explicit path, or searched upward from
        the working directory). Unset variables keep their defaults.
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))
        config = cls()

        def _get(name: str) -> Optional[str]:
            return os.getenv(f"GOVERNANCE_{name}")

        def _flag(value: str) -> bool:
            return value.strip().lower() in ("1", "true", "yes", "on")

        if _get("DAY_SECONDS"):
            config.DAY_SECONDS = int(_get("DAY_SECONDS"))
        if _get("VOTING_PERIOD_DAYS"):
            config.VOTING_PERIOD_DAYS = float(_get("VOTING_PERIOD_DAYS"))
        if _get("EARLY_UNSTAKE_PENALTY"):
            config.EARLY_UNSTAKE_PENALTY = Decimal(_get("EARLY_UNSTAKE_PENALTY"))
        if _get("VOTING_POWER_CAP"):
            config.VOTING_POWER_CAP = float(_get("VOTING_POWER_CAP"))
        if _get("VETO_THRESHOLD"):
            config.VETO_THRESHOLD = float(_get("VETO_THRESHOLD"))
        if _get("CONTENT_OFFLOAD_THRESHOLD"):
            config.CONTENT_OFFLOAD_THRESHOLD = int(_get("CONTENT_OFFLOAD_THRESHOLD"))
        if _get("REJECT_BELOW_TIER_MINIMUM"):
            config.REJECT_BELOW_TIER_MINIMUM = _flag(_get("REJECT_BELOW_TIER_MINIMUM"))
        if _get("CLEAR_OFFLOADED_DESCRIPTION"):
            config.CLEAR_OFFLOADED_DESCRIPTION = _flag(_get("CLEAR_OFFLOADED_DESCRIPTION"))
        if _get("AUDIT_MAX_RETRIES"):
            config.AUDIT_MAX_RETRIES = int(_get("AUDIT_MAX_RETRIES"))
        if _get("SCHEDULER_POLL_INTERVAL"):
            config.SCHEDULER_POLL_INTERVAL = float(_get("SCHEDULER_POLL_INTERVAL"))
        if _get("DATA_DIR"):
            config.DATA_DIR = _get("DATA_DIR")

        return config
