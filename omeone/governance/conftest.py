"""
Shared fixtures for governance tests
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from omeone.governance import (
    GovernanceConfig,
    GovernanceEngine,
    InMemoryCommitLog,
    InMemoryContentStore,
    InMemoryTokenLedger,
    StaticReputationSource,
    StakingTier,
    Vote,
    VoteType,
)


class FakeClock:
    """Manually advanced UTC clock"""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, seconds: float = 0) -> None:
        self.now += timedelta(days=days, seconds=seconds)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return GovernanceConfig(AUDIT_RETRY_DELAY=0.0, SCHEDULER_POLL_INTERVAL=0.01)


@pytest.fixture
def ledger():
    return InMemoryTokenLedger({
        "alice": 10_000,
        "bob": 10_000,
        "carol": 10_000,
        "lowtrust": 10_000,
        "poor": 50,
    })


@pytest.fixture
def reputation():
    return StaticReputationSource({
        "alice": 0.5,
        "bob": 0.6,
        "carol": 0.7,
        "lowtrust": 0.1,
        "poor": 0.5,
    })


@pytest.fixture
def commit_log():
    return InMemoryCommitLog()


@pytest.fixture
def content_store():
    return InMemoryContentStore()


@pytest.fixture
def engine(ledger, reputation, commit_log, content_store, config, clock):
    return GovernanceEngine(
        ledger=ledger,
        reputation=reputation,
        commit_log=commit_log,
        content_store=content_store,
        config=config,
        clock=clock,
    )


@pytest_asyncio.fixture
async def staked_engine(engine):
    """Engine where alice holds a CURATOR stake of 100 for 90 days"""
    await engine.stake_for_governance("alice", 100, 90)
    return engine


@pytest.fixture
def make_vote(clock):
    """Build a Vote record with a chosen power, bypassing the power formula"""

    def _make(proposal_id, voter, vote_type, power, reputation=0.5, tier=StakingTier.CURATOR):
        return Vote(
            id=f"vote_{uuid.uuid4().hex[:16]}",
            proposal_id=proposal_id,
            voter=voter,
            vote_type=VoteType(vote_type),
            voting_power=power,
            reputation_at_vote=reputation,
            stake_amount=Decimal("100"),
            staking_tier=tier,
            timestamp=clock(),
        )

    return _make
