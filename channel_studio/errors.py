"""
Exception hierarchy for Channel Studio.

Connection rejections are not exceptions: the validator returns them as values.
"""

from typing import Optional


class ChannelStudioError(Exception):
    """Base class for all Channel Studio errors."""


class InvalidNodeData(ChannelStudioError, ValueError):
    """A node attribute was rejected by the schema of its node type."""

    def __init__(self, node_id: str, field: str, message: str):
        self.node_id = node_id
        self.field = field
        super().__init__(f"Invalid value for '{field}' on node '{node_id}': {message}")


class FlowCompileError(ChannelStudioError):
    """The flow graph cannot be translated into an engine channel."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        self.node_id = node_id
        super().__init__(message)


class EngineRequestError(ChannelStudioError):
    """A call to the remote engine failed, timed out, or returned a non-success response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_id: Optional[str] = None,
    ):
        self.status_code = status_code
        self.error_id = error_id
        super().__init__(message)


class FlowDocumentError(ChannelStudioError):
    """An imported flow document is unusable."""
