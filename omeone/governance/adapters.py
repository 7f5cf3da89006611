"""
External collaborators consumed by the governance engine

The engine reaches the token ledger, the reputation source, the commit log
and the content store only through these narrow async interfaces. In-memory
reference implementations are provided for tests and local runs, plus an
HTTP commit log client for a real ledger endpoint.
"""

import hashlib
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import aiohttp
from aiohttp import ClientTimeout

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenLedger(Protocol):
    async def get_balance(self, user_id: str) -> Decimal: ...

    async def lock_tokens(self, user_id: str, amount: Decimal, duration_days: int) -> None: ...

    async def unlock_tokens(self, user_id: str, amount: Decimal) -> None: ...

    async def burn_tokens(self, amount: Decimal) -> None: ...


@runtime_checkable
class ReputationSource(Protocol):
    async def get_trust_score(self, user_id: str) -> float: ...


@runtime_checkable
class CommitLog(Protocol):
    async def submit_transaction(self, record: Dict[str, Any]) -> Dict[str, Any]: ...


@runtime_checkable
class ContentStore(Protocol):
    async def store(self, document: Dict[str, Any]) -> str: ...


class InMemoryTokenLedger:
    """Token ledger holding free and locked balances in memory"""

    def __init__(self, balances: Optional[Dict[str, Any]] = None):
        self.balances: Dict[str, Decimal] = {
            user_id: Decimal(str(amount)) for user_id, amount in (balances or {}).items()
        }
        self.locked: Dict[str, Decimal] = {}
        self.burned = Decimal("0")

    def credit(self, user_id: str, amount: Any) -> None:
        self.balances[user_id] = self.balances.get(user_id, Decimal("0")) + Decimal(str(amount))

    async def get_balance(self, user_id: str) -> Decimal:
        return self.balances.get(user_id, Decimal("0"))

    async def lock_tokens(self, user_id: str, amount: Decimal, duration_days: int) -> None:
        balance = self.balances.get(user_id, Decimal("0"))
        if balance < amount:
            raise ValueError(f"Cannot lock {amount} for {user_id}: balance {balance}")
        self.balances[user_id] = balance - amount
        self.locked[user_id] = self.locked.get(user_id, Decimal("0")) + amount
        logger.debug(f"Locked {amount} for {user_id} ({duration_days} days)")

    async def unlock_tokens(self, user_id: str, amount: Decimal) -> None:
        locked = self.locked.get(user_id, Decimal("0"))
        self.locked[user_id] = max(Decimal("0"), locked - amount)
        self.balances[user_id] = self.balances.get(user_id, Decimal("0")) + amount
        logger.debug(f"Unlocked {amount} for {user_id}")

    async def burn_tokens(self, amount: Decimal) -> None:
        self.burned += amount
        logger.debug(f"Burned {amount}")


class StaticReputationSource:
    """Trust scores from a fixed table; unknown users score `default`"""

    def __init__(self, scores: Optional[Dict[str, float]] = None, default: float = 0.0):
        self.scores: Dict[str, float] = dict(scores or {})
        self.default = default

    def set_score(self, user_id: str, score: float) -> None:
        self.scores[user_id] = score

    async def get_trust_score(self, user_id: str) -> float:
        return self.scores.get(user_id, self.default)


class InMemoryContentStore:
    """Content-addressed document store keyed by sha256"""

    def __init__(self):
        self.documents: Dict[str, Dict[str, Any]] = {}

    async def store(self, document: Dict[str, Any]) -> str:
        payload = json.dumps(document, sort_keys=True, default=str).encode("utf-8")
        content_hash = hashlib.sha256(payload).hexdigest()
        self.documents[content_hash] = document
        return content_hash


class InMemoryCommitLog:
    """Append-only commit log; set `fail` to simulate an unreachable ledger"""

    def __init__(self, fail: bool = False):
        self.records: List[Dict[str, Any]] = []
        self.fail = fail

    async def submit_transaction(self, record: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail:
            raise aiohttp.ClientConnectionError("commit log unavailable")
        self.records.append(record)
        return {"txId": f"tx_{len(self.records):08d}", "sequence": record.get("sequence")}

    def records_of_type(self, record_type: str) -> List[Dict[str, Any]]:
        return [r for r in self.records if r.get("type") == record_type]


class HttpCommitLog:
    """
    Commit log backed by an HTTP ledger endpoint

    Each audit envelope is POSTed as JSON to `{base_url}/transactions`;
    the JSON response body is returned as the receipt.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self._session is None or self._session.closed:
            timeout = ClientTimeout(total=self.timeout, connect=10)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        """Close HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def submit_transaction(self, record: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}/transactions"
        async with session.post(url, headers=self._headers(), json=record) as response:
            response.raise_for_status()
            return await response.json()
