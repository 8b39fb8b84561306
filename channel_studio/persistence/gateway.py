"""
Persistence Gateway - save, load, export and import of a workspace.

Saved and exported documents never carry secret node fields (password, apiKey,
token, secret, connectionString, credentials). A missing or malformed channel id
in an incoming document is regenerated rather than rejected.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Optional, Dict, List, Any

from pydantic import ValidationError

from channel_studio.config.settings import settings
from channel_studio.errors import FlowDocumentError
from channel_studio.graph.schema import SECRET_FIELDS
from channel_studio.persistence.storage import FlowStorage, InMemoryFlowStorage
from channel_studio.utils.ids import ensure_channel_id, is_canonical_uuid
from channel_studio.workspace import Channel, FlowWorkspace

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"


def redact_secrets(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a node's data without secret fields."""
    return {k: v for k, v in data.items() if k not in SECRET_FIELDS}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PersistenceGateway:
    """Moves workspaces to and from serialized flow documents."""

    def __init__(self, storage: Optional[FlowStorage] = None):
        self.storage = storage or InMemoryFlowStorage()

    # ── Documents ─────────────────────────────────────────────────

    def build_document(self, workspace: FlowWorkspace) -> Dict[str, Any]:
        """Serializable flow with secrets removed from every node."""
        schema = workspace.snapshot().frontend_schema()
        for node in schema["nodes"]:
            node["data"] = redact_secrets(node.get("data") or {})
        return schema

    def save(self, workspace: FlowWorkspace) -> Dict[str, Any]:
        document = self.build_document(workspace)
        document["savedAt"] = _now()
        self.storage.write(json.dumps(document))
        logger.info(
            f"[FLOW] Saved channel {workspace.channel.channel_id} "
            f"({len(document['nodes'])} nodes, {len(document['edges'])} edges)"
        )
        return document

    def load(self, workspace: FlowWorkspace, data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Populate the workspace from `data`, or from storage when no data is given.
        Returns False, leaving the workspace untouched, if there is nothing usable to load.
        """
        if data is None:
            raw = self.storage.read()
            if not raw:
                return False
            try:
                data = json.loads(raw)
            except ValueError as e:
                logger.error(f"[FLOW] Stored flow is not valid JSON: {e}")
                return False
        if not isinstance(data, dict):
            logger.error("[FLOW] Stored flow is not a JSON object")
            return False

        try:
            self._apply(workspace, data, default_name=settings.default_channel_name)
        except (ValidationError, FlowDocumentError) as e:
            logger.error(f"[FLOW] Failed to load flow: {e}")
            return False
        return True

    def export(self, workspace: FlowWorkspace) -> Dict[str, Any]:
        """Portable document: the saved shape plus a format version tag."""
        document = self.build_document(workspace)
        return {
            "version": FORMAT_VERSION,
            "name": workspace.channel.channel_name or "Channel Studio Workflow",
            **document,
            "exportedAt": _now(),
        }

    def export_filename(self, workspace: FlowWorkspace) -> str:
        name = workspace.channel.channel_name or "workflow"
        slug = re.sub(r"\s+", "_", name.lower())
        return f"{slug}.json"

    def import_flow(self, workspace: FlowWorkspace, data: Dict[str, Any]) -> None:
        """Replace the workspace with an imported document and save it immediately."""
        if not isinstance(data, dict) or not isinstance(data.get("nodes"), list):
            raise FlowDocumentError("Imported flow must contain a 'nodes' list")
        try:
            self._apply(workspace, data, default_name="Imported Channel")
        except ValidationError as e:
            raise FlowDocumentError(f"Imported flow is malformed: {e}") from e
        self.save(workspace)

    def reset(self, workspace: FlowWorkspace) -> None:
        workspace.reset()
        logger.info(f"[FLOW] Reset workspace, new channel {workspace.channel.channel_id}")

    # ── Internal ──────────────────────────────────────────────────

    def _apply(self, workspace: FlowWorkspace, data: Dict[str, Any], default_name: str) -> None:
        nodes = data.get("nodes") or []
        edges = data.get("edges") or []
        if not isinstance(nodes, list) or not isinstance(edges, list):
            raise FlowDocumentError("'nodes' and 'edges' must be lists")

        channel = self._channel_from(data, default_name)
        workspace.graph.replace(nodes, edges)
        workspace.channel = channel

    @staticmethod
    def _channel_from(data: Dict[str, Any], default_name: str) -> Channel:
        raw_id = data.get("channelId")
        if not is_canonical_uuid(raw_id):
            logger.warning(f"[FLOW] Regenerating malformed channel id {raw_id!r}")
        name = data.get("channelName")
        if not isinstance(name, str) or not name:
            name = default_name
        retries = data.get("maxRetries")
        if not isinstance(retries, int) or isinstance(retries, bool) or retries < 0:
            retries = settings.default_max_retries
        error_dest = data.get("errorDestinationId")
        if not isinstance(error_dest, str):
            error_dest = None
        return Channel(
            channel_id=ensure_channel_id(raw_id),
            channel_name=name,
            error_destination_id=error_dest,
            max_retries=retries,
        )
