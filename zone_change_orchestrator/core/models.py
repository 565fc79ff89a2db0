"""
Run-scoped state of a zone change: the zone, its staging area, the
submission handle, propagation status and the run outcome.

Nothing here is cached across runs; every OrchestrationRun owns its own
values.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from .mutations import Mutation


class ActivationState(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"

    @property
    def terminal(self) -> bool:
        return self != ActivationState.PENDING


class Outcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"


@dataclass
class Zone:
    name: str
    activation_state: Optional[ActivationState] = None
    propagation_percentage: float = 0.0


@dataclass
class StagingArea:
    """A changelist claimed by one run."""

    zone: str
    change_tag: Optional[str] = None
    owner: Optional[str] = None
    mutations: List[Mutation] = field(default_factory=list)
    submission: Optional["SubmissionHandle"] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class SubmissionHandle:
    """Tracking handle of an accepted submission."""

    request_id: str
    zone: str
    change_tag: Optional[str] = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PropagationStatus:
    state: ActivationState
    percentage: float = 0.0
    servers_updated: int = 0
    total_servers: int = 0
    message: Optional[str] = None


@dataclass
class OrchestrationRun:
    """Everything one change run owns, from staging to outcome."""

    zone: Zone
    mutations: List[Mutation]
    comment: str = ""
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    staging_area: Optional[StagingArea] = None
    submission: Optional[SubmissionHandle] = None
    status: Optional[PropagationStatus] = None
    verified: Optional[bool] = None
    outcome: Optional[Outcome] = None
    error: Optional[BaseException] = None
    warnings: List[BaseException] = field(default_factory=list)
    rollback_submission: Optional[SubmissionHandle] = None
    rollback_error: Optional[BaseException] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def submitted(self) -> bool:
        return self.submission is not None

    @property
    def requires_manual_intervention(self) -> bool:
        return self.outcome == Outcome.ROLLBACK_FAILED

    def finish(self, outcome: Outcome) -> "OrchestrationRun":
        self.outcome = outcome
        self.finished_at = datetime.now(timezone.utc)
        return self

    def summary(self) -> Dict:
        return {
            "run_id": self.run_id,
            "zone": self.zone.name,
            "outcome": self.outcome.value if self.outcome else None,
            "request_id": self.submission.request_id if self.submission else None,
            "activation_state": self.status.state.value if self.status else None,
            "propagation": self.status.percentage if self.status else None,
            "verified": self.verified,
            "mutations": [m.describe() for m in self.mutations],
            "error": str(self.error) if self.error else None,
            "warnings": [str(w) for w in self.warnings],
            "rollback_request_id": (
                self.rollback_submission.request_id if self.rollback_submission else None
            ),
            "rollback_error": str(self.rollback_error) if self.rollback_error else None,
        }
