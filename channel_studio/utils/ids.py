"""
Identifier helpers shared by the graph store and the persistence gateway.
"""

import re
import uuid
from typing import Any

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def new_id() -> str:
    return str(uuid.uuid4())


def is_canonical_uuid(value: Any) -> bool:
    """True only for a string in 8-4-4-4-12 hex form."""
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def ensure_channel_id(value: Any) -> str:
    """Return value if it is a canonical UUID, otherwise a freshly generated one."""
    if is_canonical_uuid(value):
        return value
    return new_id()
