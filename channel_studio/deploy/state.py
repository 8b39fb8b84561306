"""
Deploy and run state for a workspace.

Deploy status is tracked per deploy-target key; the run axis (offline/online) is
shared by the whole channel. Every write replaces a key with a new immutable
record, so readers never observe a half-updated status.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field


class DeployStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    STOPPED = "stopped"


class RunStatus(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"


class TargetStatus(BaseModel):
    """Status of one deploy target."""
    model_config = ConfigDict(frozen=True)

    status: DeployStatus = DeployStatus.IDLE
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


_IDLE = TargetStatus()


class RunState:
    """
    Per-target deploy status and channel run status.
    Mutated only by the deploy orchestrator; everything else reads.
    """

    def __init__(self):
        self._targets: Dict[str, TargetStatus] = {}
        self._run_status = RunStatus.OFFLINE
        self._is_running = False

    @property
    def run_status(self) -> RunStatus:
        return self._run_status

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def targets(self) -> Dict[str, TargetStatus]:
        return dict(self._targets)

    def target(self, key: str) -> TargetStatus:
        return self._targets.get(key, _IDLE)

    def set_target(self, key: str, status: DeployStatus, error_message: Optional[str] = None) -> TargetStatus:
        record = TargetStatus(status=status, error_message=error_message)
        self._targets[key] = record
        return record

    def set_run_status(self, status: RunStatus) -> None:
        self._run_status = status
        self._is_running = status == RunStatus.ONLINE

    def reset(self) -> None:
        self._targets = {}
        self.set_run_status(RunStatus.OFFLINE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_status": self._run_status.value,
            "is_running": self._is_running,
            "targets": {k: v.model_dump(mode="json") for k, v in self._targets.items()},
        }
