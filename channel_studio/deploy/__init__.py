"""Deploy Orchestration - deploy status, run status, and the deploy/start/stop lifecycle"""
from .state import DeployStatus, RunStatus, TargetStatus, RunState
from .orchestrator import DeployOrchestrator

__all__ = [
    "DeployStatus",
    "RunStatus",
    "TargetStatus",
    "RunState",
    "DeployOrchestrator",
]
