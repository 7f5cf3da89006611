"""
Voting tests: vote casting, tally, veto window
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from omeone.governance import (
    ExecutionResult,
    JobStatus,
    Proposal,
    ProposalDraft,
    ProposalStatus,
    ProposalType,
    StakingTier,
    VoteType,
)
from omeone.governance.errors import (
    AlreadyVotedError,
    InvalidStateError,
    ProposalNotFoundError,
    VetoWindowClosedError,
)


MEMBERS = [f"member{i}" for i in range(10)]


@pytest_asyncio.fixture
async def community(engine, ledger, reputation):
    """Ten CURATOR stakers of 100 tokens each; every vote caps at 30"""
    for user_id in MEMBERS:
        ledger.credit(user_id, 1000)
        reputation.set_score(user_id, 0.5)
        await engine.stake_for_governance(user_id, 100, 90)
    return engine


async def _open_proposal(engine, author="member0"):
    proposal_id = await engine.create_proposal(ProposalDraft(
        author=author,
        title="Fund regional curators",
        description="Allocate 50,000 tokens to regional curator grants.",
        proposal_type=ProposalType.TREASURY_SPEND,
        required_quorum=0.1,
        required_majority=0.5,
    ))
    await engine.activate_proposal(proposal_id)
    return proposal_id


@pytest_asyncio.fixture
async def passed_in_community(community, clock):
    proposal_id = await _open_proposal(community)
    for user_id in MEMBERS[:5]:
        await community.vote_on_proposal(proposal_id, user_id, VoteType.YES)
    clock.advance(days=7)
    result = await community.finalize_proposal(proposal_id)
    assert result.passed
    return proposal_id


# =============================================================================
# Casting votes
# =============================================================================

class TestVoteOnProposal:

    @pytest.mark.asyncio
    async def test_vote_records_snapshot(self, community, commit_log, clock):
        proposal_id = await _open_proposal(community)
        vote = await community.vote_on_proposal(proposal_id, "member1", "yes", reason="good for growth")

        assert vote.id.startswith("vote_")
        assert vote.vote_type == VoteType.YES
        assert vote.voting_power == pytest.approx(30.0)
        assert vote.reputation_at_vote == 0.5
        assert vote.stake_amount == 100
        assert vote.staking_tier == StakingTier.CURATOR
        assert vote.timestamp == clock.now
        assert vote.reason == "good for growth"
        assert community.get_proposal_votes(proposal_id) == [vote]

        record = commit_log.records_of_type("governance_vote")[0]
        assert record["data"]["voteType"] == "yes"

    @pytest.mark.asyncio
    async def test_second_vote_rejected(self, community):
        proposal_id = await _open_proposal(community)
        await community.vote_on_proposal(proposal_id, "member1", VoteType.YES)

        with pytest.raises(AlreadyVotedError) as exc_info:
            await community.vote_on_proposal(proposal_id, "member1", VoteType.NO)

        assert exc_info.value.error_code == "ALREADY_VOTED"
        assert len(community.get_proposal_votes(proposal_id)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_votes_from_same_user(self, community):
        proposal_id = await _open_proposal(community)

        results = await asyncio.gather(
            community.vote_on_proposal(proposal_id, "member2", VoteType.YES),
            community.vote_on_proposal(proposal_id, "member2", VoteType.NO),
            return_exceptions=True,
        )

        assert sum(isinstance(r, AlreadyVotedError) for r in results) == 1
        assert len(community.get_proposal_votes(proposal_id)) == 1
        assert len(community.locks) == 0

    @pytest.mark.asyncio
    async def test_vote_requires_active(self, community):
        proposal_id = await community.create_proposal(ProposalDraft(
            author="member0",
            title="Draft only",
            description="Not yet open.",
            proposal_type=ProposalType.GOVERNANCE_CHANGE,
        ))
        with pytest.raises(InvalidStateError):
            await community.vote_on_proposal(proposal_id, "member1", VoteType.YES)

    @pytest.mark.asyncio
    async def test_vote_unknown_proposal(self, community):
        with pytest.raises(ProposalNotFoundError):
            await community.vote_on_proposal("prop_missing", "member1", VoteType.YES)

    @pytest.mark.asyncio
    async def test_unstaked_voter_has_zero_power(self, community):
        proposal_id = await _open_proposal(community)
        vote = await community.vote_on_proposal(proposal_id, "outsider", VoteType.NO)

        assert vote.voting_power == 0.0
        assert vote.stake_amount == 0
        assert vote.staking_tier == StakingTier.EXPLORER

    @pytest.mark.asyncio
    async def test_unstake_during_vote_keeps_snapshot_consistent(self, community, reputation, monkeypatch):
        proposal_id = await _open_proposal(community)
        read_trust = reputation.get_trust_score

        async def slow_trust_score(user_id):
            await asyncio.sleep(0.01)
            return await read_trust(user_id)

        monkeypatch.setattr(reputation, "get_trust_score", slow_trust_score)
        vote, _ = await asyncio.gather(
            community.vote_on_proposal(proposal_id, "member2", VoteType.YES),
            community.unstake_tokens("member2"),
        )

        assert vote.voting_power == 0.0
        assert vote.stake_amount == 0
        assert vote.staking_tier == StakingTier.EXPLORER

    @pytest.mark.asyncio
    async def test_voter_history(self, community, clock):
        first = await _open_proposal(community)
        clock.advance(seconds=30)
        second = await _open_proposal(community)

        await community.vote_on_proposal(second, "member3", VoteType.NO)
        clock.advance(seconds=30)
        await community.vote_on_proposal(first, "member3", VoteType.YES)

        history = community.get_voter_history("member3")
        assert [v.proposal_id for v in history] == [second, first]


# =============================================================================
# Result computation
# =============================================================================

class TestCalculateResult:

    @pytest.mark.asyncio
    async def test_majority_excludes_abstains(self, staked_engine, make_vote):
        proposal_id = await _open_proposal(staked_engine, author="alice")
        proposal = staked_engine.get_proposal(proposal_id)
        staked_engine.store.add_vote(make_vote(proposal_id, "y", VoteType.YES, 60))
        staked_engine.store.add_vote(make_vote(proposal_id, "n", VoteType.NO, 40))
        staked_engine.store.add_vote(make_vote(proposal_id, "a", VoteType.ABSTAIN, 1000))

        result = staked_engine.voting.calculate_result(proposal)

        assert result.yes_votes == 60
        assert result.no_votes == 40
        assert result.abstain_votes == 1000
        assert result.total_voting_power == 1100
        assert result.majority_achieved

    @pytest.mark.asyncio
    async def test_tie_is_not_a_majority(self, staked_engine, make_vote):
        proposal_id = await _open_proposal(staked_engine, author="alice")
        staked_engine.store.add_vote(make_vote(proposal_id, "y", VoteType.YES, 50))
        staked_engine.store.add_vote(make_vote(proposal_id, "n", VoteType.NO, 50))

        result = staked_engine.voting.calculate_result(staked_engine.get_proposal(proposal_id))
        assert not result.majority_achieved

    @pytest.mark.asyncio
    async def test_participation_zero_without_stake(self, engine, make_vote):
        proposal = Proposal(
            id="prop_empty",
            author="nobody",
            title="t",
            description="d",
            proposal_type=ProposalType.PARAMETER_CHANGE,
            status=ProposalStatus.ACTIVE,
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            required_quorum=0.2,
            required_majority=0.5,
            author_reputation_at_creation=0.0,
        )
        engine.store.put_proposal(proposal)
        engine.store.add_vote(make_vote("prop_empty", "y", VoteType.YES, 5))

        result = engine.voting.calculate_result(proposal)
        assert result.participation_rate == 0.0
        assert not result.quorum_reached

    @pytest.mark.asyncio
    async def test_breakdown(self, staked_engine, make_vote):
        proposal_id = await _open_proposal(staked_engine, author="alice")
        staked_engine.store.add_vote(make_vote(proposal_id, "h", VoteType.YES, 5, reputation=0.9))
        staked_engine.store.add_vote(make_vote(
            proposal_id, "m", VoteType.NO, 2, reputation=0.4, tier=StakingTier.PASSPORT
        ))
        staked_engine.store.add_vote(make_vote(proposal_id, "l", VoteType.ABSTAIN, 1, reputation=0.1))

        result = staked_engine.voting.calculate_result(staked_engine.get_proposal(proposal_id))
        breakdown = result.to_dict()["voterBreakdown"]

        assert breakdown["byReputation"] == {"high": 1, "medium": 1, "low": 1}
        assert breakdown["byTier"]["curator"] == {"count": 2, "power": 6}
        assert breakdown["byTier"]["passport"] == {"count": 1, "power": 2}


# =============================================================================
# Veto
# =============================================================================

class TestVeto:

    @pytest.mark.asyncio
    async def test_veto_blocks_execution(self, community, passed_in_community):
        handler = AsyncMock(return_value=ExecutionResult(True))
        community.register_handler(ProposalType.TREASURY_SPEND, handler)

        # 5 x 30 = 150, i.e. 15% of 1000 staked
        for user_id in MEMBERS[5:]:
            await community.veto_proposal(passed_in_community, user_id)
        assert community.veto_power(passed_in_community) == pytest.approx(150.0)

        status = await community.execute_proposal(passed_in_community)

        assert status == ProposalStatus.VETOED
        handler.assert_not_awaited()
        proposal = community.get_proposal(passed_in_community)
        assert proposal.executed_at is None
        assert community.scheduler.get_job(proposal.scheduled_job_id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_veto_below_threshold(self, community, passed_in_community):
        handler = AsyncMock(return_value=ExecutionResult(True))
        community.register_handler(ProposalType.TREASURY_SPEND, handler)

        # 3 x 30 = 90, under 10% of 1000
        for user_id in MEMBERS[5:8]:
            await community.veto_proposal(passed_in_community, user_id)

        assert await community.execute_proposal(passed_in_community) == ProposalStatus.EXECUTED
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_vetoes_still_count_after_window(self, community, passed_in_community, clock):
        for user_id in MEMBERS[5:]:
            await community.veto_proposal(passed_in_community, user_id)

        clock.advance(days=7)
        assert await community.run_due_executions() == {passed_in_community: ProposalStatus.VETOED}

    @pytest.mark.asyncio
    async def test_veto_window_closes(self, community, passed_in_community, clock):
        clock.advance(days=3)
        with pytest.raises(VetoWindowClosedError) as exc_info:
            await community.veto_proposal(passed_in_community, "member9")
        assert exc_info.value.error_code == "VETO_WINDOW_CLOSED"

    @pytest.mark.asyncio
    async def test_one_veto_per_user(self, community, passed_in_community):
        await community.veto_proposal(passed_in_community, "member9")
        with pytest.raises(AlreadyVotedError):
            await community.veto_proposal(passed_in_community, "member9")

    @pytest.mark.asyncio
    async def test_veto_requires_passed(self, community):
        proposal_id = await _open_proposal(community)
        with pytest.raises(InvalidStateError):
            await community.veto_proposal(proposal_id, "member9")

    @pytest.mark.asyncio
    async def test_veto_is_audited(self, community, passed_in_community, commit_log):
        await community.veto_proposal(passed_in_community, "member9", reason="too large")
        vetoes = [r for r in commit_log.records_of_type("governance_vote") if r["data"]["voteType"] == "veto"]
        assert len(vetoes) == 1
        assert vetoes[0]["data"]["voter"] == "member9"
