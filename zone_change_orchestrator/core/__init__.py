"""
Core zone change functionality.

This package contains the staging, submission, convergence, verification
and rollback components and the orchestrator that runs them in order.
"""

from .change_manager import ZoneChangeManager
from .convergence import ConvergencePoller
from .locks import ZoneLockRegistry
from .models import (
    ActivationState,
    OrchestrationRun,
    Outcome,
    PropagationStatus,
    StagingArea,
    SubmissionHandle,
    Zone,
)
from .mutations import Mutation, Operation, encode_mutation
from .orchestrator import ZoneChangeOrchestrator, build_orchestrator
from .record_manager import RecordManager
from .rollback import RollbackController
from .staging import StagingManager
from .submission import SubmissionCoordinator
from .verification import ResolutionVerifier

__all__ = [
    "ActivationState",
    "ConvergencePoller",
    "Mutation",
    "Operation",
    "OrchestrationRun",
    "Outcome",
    "PropagationStatus",
    "RecordManager",
    "ResolutionVerifier",
    "RollbackController",
    "StagingArea",
    "StagingManager",
    "SubmissionCoordinator",
    "SubmissionHandle",
    "Zone",
    "ZoneChangeManager",
    "ZoneChangeOrchestrator",
    "ZoneLockRegistry",
    "build_orchestrator",
    "encode_mutation",
]
