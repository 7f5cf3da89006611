"""
Governance state repositories

The engine never touches its collections directly; it goes through a
GovernanceStore so the in-memory system of record can be swapped for a
durable one without changing engine logic.
"""

import json
import logging
import shutil
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import (
    JobStatus,
    Milestone,
    Proposal,
    ProposalStatus,
    ScheduledExecution,
    Stake,
    VetoVote,
    Vote,
)

logger = logging.getLogger(__name__)


class GovernanceStore(ABC):
    """Repository interface for stakes, proposals, votes, milestones and jobs"""

    # Stakes (keyed by user id)
    @abstractmethod
    def get_stake(self, user_id: str) -> Optional[Stake]: ...

    @abstractmethod
    def put_stake(self, stake: Stake) -> None: ...

    @abstractmethod
    def list_stakes(self) -> List[Stake]: ...

    # Proposals
    @abstractmethod
    def get_proposal(self, proposal_id: str) -> Optional[Proposal]: ...

    @abstractmethod
    def put_proposal(self, proposal: Proposal) -> None: ...

    @abstractmethod
    def list_proposals(self, status: Optional[ProposalStatus] = None) -> List[Proposal]: ...

    # Votes and vetoes (keyed by proposal id)
    @abstractmethod
    def list_votes(self, proposal_id: str) -> List[Vote]: ...

    @abstractmethod
    def add_vote(self, vote: Vote) -> None: ...

    @abstractmethod
    def all_votes(self) -> List[Vote]: ...

    @abstractmethod
    def list_vetoes(self, proposal_id: str) -> List[VetoVote]: ...

    @abstractmethod
    def add_veto(self, veto: VetoVote) -> None: ...

    # Milestones
    @abstractmethod
    def list_milestones(self) -> List[Milestone]: ...

    @abstractmethod
    def put_milestones(self, milestones: List[Milestone]) -> None: ...

    # Scheduled executions
    @abstractmethod
    def get_job(self, job_id: str) -> Optional[ScheduledExecution]: ...

    @abstractmethod
    def put_job(self, job: ScheduledExecution) -> None: ...

    @abstractmethod
    def list_jobs(self, status: Optional[JobStatus] = None) -> List[ScheduledExecution]: ...

    # Audit outbox and counters
    @abstractmethod
    def push_audit(self, record: Dict[str, Any]) -> None: ...

    @abstractmethod
    def list_audit_outbox(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def remove_audit(self, sequence: int) -> None: ...

    @abstractmethod
    def get_meta(self, key: str, default: Any = None) -> Any: ...

    @abstractmethod
    def set_meta(self, key: str, value: Any) -> None: ...


class InMemoryGovernanceStore(GovernanceStore):
    """Dict-backed store; the default system of record"""

    def __init__(self):
        self.stakes: Dict[str, Stake] = {}
        self.proposals: Dict[str, Proposal] = {}
        self.votes: Dict[str, List[Vote]] = {}  # proposal_id -> votes
        self.vetoes: Dict[str, List[VetoVote]] = {}  # proposal_id -> veto votes
        self.milestones: List[Milestone] = []
        self.jobs: Dict[str, ScheduledExecution] = {}
        self.audit_outbox: List[Dict[str, Any]] = []
        self.meta: Dict[str, Any] = {}

    def _changed(self) -> None:
        """Hook for durable subclasses"""

    def get_stake(self, user_id: str) -> Optional[Stake]:
        return self.stakes.get(user_id)

    def put_stake(self, stake: Stake) -> None:
        self.stakes[stake.user_id] = stake
        self._changed()

    def list_stakes(self) -> List[Stake]:
        return list(self.stakes.values())

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        return self.proposals.get(proposal_id)

    def put_proposal(self, proposal: Proposal) -> None:
        self.proposals[proposal.id] = proposal
        self.votes.setdefault(proposal.id, [])
        self._changed()

    def list_proposals(self, status: Optional[ProposalStatus] = None) -> List[Proposal]:
        proposals = list(self.proposals.values())
        if status:
            proposals = [p for p in proposals if p.status == status]
        return proposals

    def list_votes(self, proposal_id: str) -> List[Vote]:
        return list(self.votes.get(proposal_id, []))

    def add_vote(self, vote: Vote) -> None:
        self.votes.setdefault(vote.proposal_id, []).append(vote)
        self._changed()

    def all_votes(self) -> List[Vote]:
        return [vote for votes in self.votes.values() for vote in votes]

    def list_vetoes(self, proposal_id: str) -> List[VetoVote]:
        return list(self.vetoes.get(proposal_id, []))

    def add_veto(self, veto: VetoVote) -> None:
        self.vetoes.setdefault(veto.proposal_id, []).append(veto)
        self._changed()

    def list_milestones(self) -> List[Milestone]:
        return list(self.milestones)

    def put_milestones(self, milestones: List[Milestone]) -> None:
        self.milestones = list(milestones)
        self._changed()

    def get_job(self, job_id: str) -> Optional[ScheduledExecution]:
        return self.jobs.get(job_id)

    def put_job(self, job: ScheduledExecution) -> None:
        self.jobs[job.id] = job
        self._changed()

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[ScheduledExecution]:
        jobs = sorted(self.jobs.values(), key=lambda j: j.due_at)
        if status:
            jobs = [j for j in jobs if j.status == status]
        return jobs

    def push_audit(self, record: Dict[str, Any]) -> None:
        self.audit_outbox.append(record)
        self._changed()

    def list_audit_outbox(self) -> List[Dict[str, Any]]:
        return list(self.audit_outbox)

    def remove_audit(self, sequence: int) -> None:
        self.audit_outbox = [r for r in self.audit_outbox if r.get("sequence") != sequence]
        self._changed()

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self.meta.get(key, default)

    def set_meta(self, key: str, value: Any) -> None:
        self.meta[key] = value
        self._changed()


class JsonFileGovernanceStore(InMemoryGovernanceStore):
    """In-memory store that snapshots itself to a JSON file on every change"""

    def __init__(self, data_dir: str = "data/governance", filename: str = "governance.json"):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.backup_dir = self.data_dir / "backups"
        self.backup_dir.mkdir(exist_ok=True)
        self.filepath = self.data_dir / filename
        self._lock = threading.Lock()
        self._loading = False
        self.load()

    def _changed(self) -> None:
        if not self._loading:
            self.save()

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "stakes": {user_id: s.to_dict() for user_id, s in self.stakes.items()},
            "proposals": {pid: p.to_dict() for pid, p in self.proposals.items()},
            "votes": {pid: [v.to_dict() for v in votes] for pid, votes in self.votes.items()},
            "vetoes": {pid: [v.to_dict() for v in vetoes] for pid, vetoes in self.vetoes.items()},
            "milestones": [m.to_dict() for m in self.milestones],
            "jobs": {job_id: j.to_dict() for job_id, j in self.jobs.items()},
            "audit_outbox": self.audit_outbox,
            "meta": self.meta,
        }

    def save(self) -> None:
        """Write the full snapshot, replacing the previous file atomically"""
        with self._lock:
            tmp_path = self.filepath.with_suffix(".tmp")
            try:
                with open(tmp_path, 'w') as f:
                    json.dump(self._snapshot(), f, indent=2)
                tmp_path.replace(self.filepath)
            except OSError as e:
                logger.error(f"Failed to save governance state to {self.filepath}: {e}")
                raise

    def load(self) -> None:
        """Load the snapshot if one exists"""
        if not self.filepath.exists():
            logger.info(f"No governance state found at {self.filepath}")
            return

        with open(self.filepath, 'r') as f:
            data = json.load(f)

        self._loading = True
        try:
            self.stakes = {
                user_id: Stake.from_dict(s) for user_id, s in data.get("stakes", {}).items()
            }
            self.proposals = {
                pid: Proposal.from_dict(p) for pid, p in data.get("proposals", {}).items()
            }
            self.votes = {
                pid: [Vote.from_dict(v) for v in votes]
                for pid, votes in data.get("votes", {}).items()
            }
            self.vetoes = {
                pid: [VetoVote.from_dict(v) for v in vetoes]
                for pid, vetoes in data.get("vetoes", {}).items()
            }
            self.milestones = [Milestone.from_dict(m) for m in data.get("milestones", [])]
            self.jobs = {
                job_id: ScheduledExecution.from_dict(j) for job_id, j in data.get("jobs", {}).items()
            }
            self.audit_outbox = list(data.get("audit_outbox", []))
            self.meta = dict(data.get("meta", {}))
        finally:
            self._loading = False

        logger.info(
            f"Loaded {len(self.proposals)} proposals, {len(self.stakes)} stakes "
            f"and {len(self.jobs)} scheduled executions from {self.filepath}"
        )

    def create_backup(self, tag: Optional[str] = None) -> Path:
        """Copy the current snapshot into the backup directory"""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
        tag_suffix = f"_{tag}" if tag else ""
        backup_path = self.backup_dir / f"backup_{timestamp}{tag_suffix}"
        backup_path.mkdir(exist_ok=True)

        if self.filepath.exists():
            shutil.copy2(self.filepath, backup_path / self.filepath.name)

        logger.info(f"Created backup at {backup_path}")
        return backup_path

    def restore_backup(self, backup_path: Path) -> None:
        """Restore a snapshot from backup and reload it"""
        src = Path(backup_path) / self.filepath.name
        if not src.exists():
            raise FileNotFoundError(f"No snapshot in backup {backup_path}")
        shutil.copy2(src, self.filepath)
        self.load()
        logger.info(f"Restored backup from {backup_path}")

    def list_backups(self) -> List[Path]:
        """List available backups, newest first"""
        return sorted(self.backup_dir.glob("backup_*"), reverse=True)
