"""
Milestone tracking for progressive decentralization
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from .audit import AuditTrail
from .config import GovernanceConfig
from .locks import KeyedLock
from .models import Milestone
from .staking import StakingManager
from .storage import GovernanceStore
from .voting import VotingManager

logger = logging.getLogger(__name__)


MetricProvider = Callable[[], Awaitable[float]]


class MilestoneTracker:
    """
    Evaluates the fixed milestone list against live aggregates.

    `totalStaked` and `uniqueVoters` are computed from governance state.
    Any other requirement key needs a provider registered with
    `register_metric`; until then it is a placeholder that always passes.
    """

    def __init__(
        self,
        config: GovernanceConfig,
        store: GovernanceStore,
        staking: StakingManager,
        voting: VotingManager,
        audit: AuditTrail,
        locks: KeyedLock,
        clock: Callable[[], datetime],
    ):
        self.config = config
        self.store = store
        self.staking = staking
        self.voting = voting
        self.audit = audit
        self.locks = locks
        self._clock = clock
        self._providers: Dict[str, MetricProvider] = {}

        if not self.store.list_milestones():
            self.store.put_milestones([Milestone.from_dict(m) for m in config.MILESTONES])

    def register_metric(self, name: str, provider: MetricProvider) -> None:
        """Attach an external evaluator for a requirement key"""
        self._providers[name] = provider
        logger.info(f"Registered milestone metric provider for {name}")

    def get_milestones(self) -> List[Milestone]:
        return self.store.list_milestones()

    async def _metric(self, name: str) -> Optional[float]:
        if name == "totalStaked":
            return float(self.staking.total_staked())
        if name == "uniqueVoters":
            return float(self.voting.unique_voters())
        provider = self._providers.get(name)
        if provider is None:
            return None
        return float(await provider())

    async def _is_met(self, milestone: Milestone) -> bool:
        for name, threshold in milestone.requirements.items():
            value = await self._metric(name)
            if value is None:
                logger.debug(f"No evaluator for '{name}' on {milestone.name}; treating as met")
                continue
            if value < threshold:
                return False
        return True

    async def check_milestones(self) -> List[Milestone]:
        """
        Evaluate unachieved milestones.

        Checks are serialized so a milestone is achieved and audited once
        even when calls overlap on a slow metric provider.

        Returns:
            Milestones achieved by this call only; `get_milestones()`
            returns the full list with achievement state.
        """
        async with self.locks.milestones():
            milestones = self.store.list_milestones()
            newly_achieved = []
            for milestone in milestones:
                if milestone.achieved:
                    continue
                if await self._is_met(milestone):
                    milestone.achieved = True
                    milestone.achieved_at = self._clock()
                    newly_achieved.append(milestone)

            if not newly_achieved:
                return []
            self.store.put_milestones(milestones)

        for milestone in newly_achieved:
            logger.info(f"Milestone achieved: {milestone.name}")
            await self.audit.emit("governance_milestone", {
                "milestone": milestone.name,
                "unlocks": list(milestone.unlocks),
                "achievedAt": milestone.achieved_at.isoformat(),
            })
        return newly_achieved
