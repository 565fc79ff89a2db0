"""
Zone Change Orchestrator - Staged, verified and reversible zone changes

Stages record mutations in a per-zone changelist, submits them as one
atomic unit, waits for the change to reach every edge server, verifies
public resolution and rolls back when any step after submission fails.
"""

__version__ = "1.0.0"
__author__ = "Zone Change Orchestrator Team"
__description__ = "Transactional change orchestration for Edge DNS zones"

from .core.change_manager import ZoneChangeManager
from .core.mutations import Mutation, Operation
from .core.orchestrator import ZoneChangeOrchestrator, build_orchestrator
from .core.record_manager import RecordManager
from .providers.dns_client import EdgeDNSClient

__all__ = [
    "EdgeDNSClient",
    "Mutation",
    "Operation",
    "RecordManager",
    "ZoneChangeManager",
    "ZoneChangeOrchestrator",
    "build_orchestrator",
]
