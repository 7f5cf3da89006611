"""
Audit trail tests: envelopes, failure tolerance, outbox replay, HTTP commit log
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from aiohttp import ClientConnectionError, ClientResponseError, test_utils, web

from omeone.governance import HttpCommitLog, InMemoryGovernanceStore
from omeone.governance.audit import AuditTrail
from omeone.governance.errors import AuditRejectedError, AuditTransportError, ErrorHandler


@pytest_asyncio.fixture
async def ledger_server():
    """Minimal ledger endpoint; answers 503 while `state.fail` is set, 422 while `state.reject` is"""
    state = SimpleNamespace(fail=False, reject=False, calls=0, received=[], url=None)
    received = state.received

    async def transactions(request):
        state.calls += 1
        if state.reject:
            return web.json_response({"error": "malformed record"}, status=422)
        if state.fail:
            return web.json_response({"error": "unavailable"}, status=503)
        body = await request.json()
        received.append(body)
        return web.json_response({"txId": f"tx_{len(received)}", "sequence": body["sequence"]})

    app = web.Application()
    app.router.add_post("/transactions", transactions)

    server = test_utils.TestServer(app)
    await server.start_server()
    state.url = str(server.make_url(""))
    yield state
    await server.close()


# =============================================================================
# Envelopes
# =============================================================================

class TestAuditTrail:

    @pytest.mark.asyncio
    async def test_sequence_increases(self, staked_engine, commit_log, clock):
        await staked_engine.unstake_tokens("alice")

        sequences = [r["sequence"] for r in commit_log.records]
        assert sequences == [1, 2]
        assert [r["type"] for r in commit_log.records] == ["governance_stake", "governance_unstake"]
        assert commit_log.records[0]["emittedAt"] == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, engine):
        with pytest.raises(ValueError):
            await engine.audit.emit("governance_other", {})

    @pytest.mark.asyncio
    async def test_failure_does_not_fail_operation(self, engine, commit_log):
        commit_log.fail = True

        stake = await engine.stake_for_governance("alice", 100, 90)

        assert stake.is_active
        assert engine.get_user_stake("alice") is stake
        assert commit_log.records == []
        pending = engine.audit.pending()
        assert [r["type"] for r in pending] == ["governance_stake"]

    @pytest.mark.asyncio
    async def test_outbox_flush(self, engine, commit_log):
        commit_log.fail = True
        await engine.stake_for_governance("alice", 100, 90)
        await engine.stake_for_governance("bob", 100, 90)

        assert await engine.flush_audit_outbox() == 0
        assert len(engine.audit.pending()) == 2

        commit_log.fail = False
        assert await engine.flush_audit_outbox() == 2
        assert engine.audit.pending() == []
        assert [r["sequence"] for r in commit_log.records] == [1, 2]

    @pytest.mark.asyncio
    async def test_sequence_survives_new_trail(self, commit_log, config, clock):
        store = InMemoryGovernanceStore()
        trail = AuditTrail(commit_log, store, config, clock)
        await trail.emit("governance_stake", {"userId": "alice"})

        resumed = AuditTrail(commit_log, store, config, clock)
        await resumed.emit("governance_stake", {"userId": "bob"})
        assert resumed.last_sequence == 2


# =============================================================================
# Retry helper
# =============================================================================

class TestErrorHandler:

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        operation = AsyncMock(side_effect=[ClientConnectionError("reset"), {"ok": True}])

        success, result = await ErrorHandler.handle_async_operation(
            operation, operation_name="submit", max_retries=1, retry_delay=0
        )

        assert success
        assert result == {"ok": True}
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries(self):
        operation = AsyncMock(side_effect=ClientConnectionError("down"))

        success, error = await ErrorHandler.handle_async_operation(
            operation, operation_name="submit", max_retries=2, retry_delay=0
        )

        assert not success
        assert isinstance(error, AuditTransportError)
        assert error.to_dict()["error"] == "AUDIT_TRANSPORT_ERROR"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_adapter_bug_is_not_retried(self):
        operation = AsyncMock(side_effect=KeyError("sequence"))

        success, error = await ErrorHandler.handle_async_operation(
            operation, operation_name="submit", max_retries=2, retry_delay=0
        )

        assert not success
        assert isinstance(error, AuditRejectedError)
        assert error.error_code == "AUDIT_REJECTED"
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self):
        operation = AsyncMock(side_effect=[asyncio.TimeoutError(), {"ok": True}])

        success, result = await ErrorHandler.handle_async_operation(
            operation, operation_name="submit", max_retries=1, retry_delay=0
        )

        assert success
        assert operation.await_count == 2


# =============================================================================
# HTTP commit log
# =============================================================================

class TestHttpCommitLog:

    @pytest.mark.asyncio
    async def test_submit_returns_receipt(self, ledger_server):
        log = HttpCommitLog(ledger_server.url, api_key="secret")
        try:
            receipt = await log.submit_transaction({"type": "governance_stake", "data": {}, "sequence": 7})
        finally:
            await log.close()

        assert receipt == {"txId": "tx_1", "sequence": 7}
        assert ledger_server.received[0]["type"] == "governance_stake"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, ledger_server):
        ledger_server.fail = True
        log = HttpCommitLog(ledger_server.url)
        try:
            with pytest.raises(ClientResponseError):
                await log.submit_transaction({"type": "governance_stake", "data": {}, "sequence": 1})
        finally:
            await log.close()

    @pytest.mark.asyncio
    async def test_trail_parks_on_http_failure(self, ledger_server, config, clock):
        ledger_server.fail = True
        log = HttpCommitLog(ledger_server.url)
        trail = AuditTrail(log, InMemoryGovernanceStore(), config, clock)
        try:
            assert not await trail.emit("governance_activate", {"proposalId": "prop_1"})
            assert len(trail.pending()) == 1

            ledger_server.fail = False
            assert await trail.flush() == 1
        finally:
            await log.close()

        assert ledger_server.received[0]["data"] == {"proposalId": "prop_1"}

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, ledger_server, config, clock):
        ledger_server.fail = True
        log = HttpCommitLog(ledger_server.url)
        trail = AuditTrail(log, InMemoryGovernanceStore(), config, clock)
        try:
            assert not await trail.emit("governance_activate", {"proposalId": "prop_1"})
        finally:
            await log.close()

        assert ledger_server.calls == config.AUDIT_MAX_RETRIES + 1

    @pytest.mark.asyncio
    async def test_rejected_record_is_not_retried(self, ledger_server, config, clock):
        ledger_server.reject = True
        log = HttpCommitLog(ledger_server.url)
        trail = AuditTrail(log, InMemoryGovernanceStore(), config, clock)
        try:
            assert not await trail.emit("governance_activate", {"proposalId": "prop_1"})
        finally:
            await log.close()

        assert ledger_server.calls == 1
        assert [r["type"] for r in trail.pending()] == ["governance_activate"]
