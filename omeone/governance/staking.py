"""
Staking Management Module for Governance System

Tier assignment, stake/unstake with early-exit penalty, and voting power.
"""

import logging
import math
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Callable, Optional, Tuple

from .adapters import ReputationSource, TokenLedger
from .audit import AuditTrail
from .config import GovernanceConfig
from .errors import (
    AlreadyStakedError,
    InsufficientBalanceError,
    InsufficientTrustScoreError,
    InvalidAmountError,
    NoActiveStakeError,
    StakeBelowMinimumError,
)
from .locks import KeyedLock
from .models import Stake, StakingTier, UnstakeReceipt
from .storage import GovernanceStore

logger = logging.getLogger(__name__)


def _to_decimal(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(f"Invalid stake amount: {amount!r}", {"amount": str(amount)})
    if not value.is_finite() or value <= 0:
        raise InvalidAmountError(f"Stake amount must be positive, got {amount}", {"amount": str(amount)})
    return value


class StakingManager:
    """
    Manages governance stakes

    Features:
    - Tier determination from amount, lock duration and trust score
    - One active stake per user (re-staking requires unstaking first)
    - Early-exit penalty burned on unstake before lock expiry
    - Voting power with tier multiplier and whale cap
    """

    def __init__(
        self,
        config: GovernanceConfig,
        store: GovernanceStore,
        ledger: TokenLedger,
        reputation: ReputationSource,
        audit: AuditTrail,
        locks: KeyedLock,
        clock: Callable[[], datetime],
    ):
        self.config = config
        self.store = store
        self.ledger = ledger
        self.reputation = reputation
        self.audit = audit
        self.locks = locks
        self._clock = clock
        logger.info("StakingManager initialized")

    # ===== Tiers =====

    def determine_tier(self, amount: Decimal, duration_days: int, trust_score: float) -> StakingTier:
        """
        Highest tier whose token, duration and trust minimums are all met.

        Falls back to EXPLORER when no tier qualifies.
        """
        tiers = sorted(
            self.config.STAKING_TIERS.items(),
            key=lambda item: item[1].min_tokens,
            reverse=True,
        )
        for tier, requirements in tiers:
            if requirements.is_satisfied_by(amount, duration_days, trust_score):
                return tier
        return StakingTier.EXPLORER

    def tier_privileges(self, tier: StakingTier) -> Tuple[str, ...]:
        return tuple(self.config.STAKING_TIERS[tier].privileges)

    def _below_lowest_tier(self, amount: Decimal, duration_days: int) -> bool:
        lowest = min(self.config.STAKING_TIERS.values(), key=lambda r: r.min_tokens)
        return amount < lowest.min_tokens or duration_days < lowest.min_duration_days

    # ===== Queries =====

    def get_active_stake(self, user_id: str) -> Optional[Stake]:
        stake = self.store.get_stake(user_id)
        if stake and stake.is_active:
            return stake
        return None

    def total_staked(self) -> Decimal:
        return sum((s.amount for s in self.store.list_stakes() if s.is_active), Decimal("0"))

    def unique_stakers(self) -> int:
        return len({s.user_id for s in self.store.list_stakes() if s.is_active})

    def total_possible_voting_power(self) -> float:
        """Sum of all currently active stake amounts"""
        return float(self.total_staked())

    async def calculate_voting_power(self, user_id: str) -> float:
        """
        Voting power of a user at this moment

        sqrt(stake * trust * TRUST_SCALE) times the tier multiplier, capped at
        VOTING_POWER_CAP of the current total possible voting power.
        """
        stake = self.get_active_stake(user_id)
        if not stake:
            return 0.0

        trust_score = await self.reputation.get_trust_score(user_id)
        return self.power_for_stake(stake, trust_score)

    def power_for_stake(self, stake: Optional[Stake], trust_score: float) -> float:
        """Voting power for a given stake snapshot and trust score"""
        if not stake or not stake.is_active:
            return 0.0

        geometric_mean = math.sqrt(float(stake.amount) * trust_score * self.config.TRUST_SCALE)
        power = geometric_mean * self.config.TIER_MULTIPLIERS.get(stake.tier, 1.0)

        cap = self.total_possible_voting_power() * self.config.VOTING_POWER_CAP
        return min(power, cap)

    # ===== Stake lifecycle =====

    async def stake_for_governance(self, user_id: str, amount: Any, lock_duration_days: int) -> Stake:
        """
        Lock tokens for governance participation

        Raises:
            AlreadyStakedError, InvalidAmountError, InsufficientBalanceError,
            InsufficientTrustScoreError, StakeBelowMinimumError
        """
        if self.get_active_stake(user_id):
            raise AlreadyStakedError(user_id)

        value = _to_decimal(amount)
        if int(lock_duration_days) < 0:
            raise InvalidAmountError(
                f"Lock duration must be non-negative, got {lock_duration_days}",
                {"lock_duration_days": lock_duration_days},
            )
        lock_duration_days = int(lock_duration_days)

        balance = await self.ledger.get_balance(user_id)
        if balance < value:
            raise InsufficientBalanceError(user_id, balance, value)

        trust_score = await self.reputation.get_trust_score(user_id)
        tier = self.determine_tier(value, lock_duration_days, trust_score)
        requirements = self.config.STAKING_TIERS[tier]
        if trust_score < requirements.trust_score_minimum:
            raise InsufficientTrustScoreError(
                user_id, trust_score, requirements.trust_score_minimum, tier=tier.value
            )

        if self.config.REJECT_BELOW_TIER_MINIMUM and self._below_lowest_tier(value, lock_duration_days):
            raise StakeBelowMinimumError(user_id, value, lock_duration_days)

        async with self.locks.user(user_id):
            # Another request may have staked while we were reading the ledger
            if self.get_active_stake(user_id):
                raise AlreadyStakedError(user_id)

            await self.ledger.lock_tokens(user_id, value, lock_duration_days)
            stake = Stake(
                user_id=user_id,
                amount=value,
                tier=tier,
                staked_at=self._clock(),
                lock_duration_days=lock_duration_days,
            )
            self.store.put_stake(stake)

        logger.info(f"{user_id} staked {value} as {tier.value} for {lock_duration_days} days")
        await self.audit.emit("governance_stake", {
            "userId": user_id,
            "amount": str(value),
            "tier": tier.value,
            "lockDuration": lock_duration_days,
        })
        return stake

    async def unstake_tokens(self, user_id: str) -> UnstakeReceipt:
        """
        Release the user's active stake

        Before lock expiry the early-exit penalty (rounded down to whole
        tokens) is burned and the rest returned.
        """
        async with self.locks.user(user_id):
            stake = self.get_active_stake(user_id)
            if not stake:
                raise NoActiveStakeError(user_id)

            now = self._clock()
            if stake.penalty_burned is not None:
                # Resuming an unstake whose unlock failed after the burn
                early = True
                penalty = stake.penalty_burned
            else:
                early = now < stake.lock_expires_at(self.config.DAY_SECONDS)
                penalty = Decimal("0")
                if early:
                    penalty = (stake.amount * self.config.EARLY_UNSTAKE_PENALTY).to_integral_value(
                        rounding=ROUND_FLOOR
                    )
            returned = stake.amount - penalty

            if penalty > 0 and stake.penalty_burned is None:
                await self.ledger.burn_tokens(penalty)
                stake.penalty_burned = penalty
                self.store.put_stake(stake)
            await self.ledger.unlock_tokens(user_id, returned)

            stake.is_active = False
            stake.unstaked_at = now
            self.store.put_stake(stake)

        receipt = UnstakeReceipt(
            user_id=user_id,
            amount=stake.amount,
            penalty=penalty,
            returned=returned,
            early=early,
        )
        if early:
            logger.info(f"{user_id} unstaked early: burned {penalty}, returned {returned}")
        else:
            logger.info(f"{user_id} unstaked {returned}")

        await self.audit.emit("governance_unstake", {
            "userId": user_id,
            "amount": str(stake.amount),
            "penalty": str(penalty),
            "returned": str(returned),
        })
        return receipt
