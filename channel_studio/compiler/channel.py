"""
Engine Channel Document - the channel configuration the remote engine executes.
Stage configs are tagged ``{type, config}`` objects using the engine's stage names.
"""

import json
from typing import Optional, Dict, List, Any

from pydantic import BaseModel, Field, field_validator


class SourceStage(BaseModel):
    """Inbound stage, e.g. ``{"type": "http_listener", "config": {"port": 8080}}``."""
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("config")
    @classmethod
    def drop_unset(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        # unset options are omitted rather than sent as null
        return {k: val for k, val in v.items() if val is not None}


class PipelineStage(SourceStage):
    """Processor or destination stage, tied back to the graph node it came from."""
    id: str
    name: str


class EngineChannel(BaseModel):
    """Compiled channel, as submitted to the engine."""
    id: str
    name: str
    enabled: bool = True
    source: SourceStage
    processors: List[PipelineStage] = Field(default_factory=list)
    destinations: List[PipelineStage] = Field(default_factory=list)
    error_destination: Optional[PipelineStage] = None
    max_retries: int = 3

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def to_json(self) -> str:
        """Canonical serialization: identical channels give identical bytes."""
        return json.dumps(self.to_document(), sort_keys=True, separators=(",", ":"))
