"""
Flow storage backends. A backend stores exactly one serialized flow document.
"""

import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class FlowStorage:
    """Interface for a single-slot document store."""

    def read(self) -> Optional[str]:
        raise NotImplementedError

    def write(self, payload: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class InMemoryFlowStorage(FlowStorage):

    def __init__(self, payload: Optional[str] = None):
        self._payload = payload

    def read(self) -> Optional[str]:
        return self._payload

    def write(self, payload: str) -> None:
        self._payload = payload

    def clear(self) -> None:
        self._payload = None


class JsonFileFlowStorage(FlowStorage):
    """Keeps the document in a JSON file on local disk."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(self.path)
        logger.debug(f"[FLOW] Wrote {len(payload)} bytes to {self.path}")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
