"""Centralized canonical JSON serialization.

Build definitions, provenance statements and subject lists are all written
through this function, so re-serializing a parsed document reproduces the
original bytes. Signed attestations depend on that.
"""

import json
from typing import Any


def canonical_dumps(obj: Any) -> str:
    """
    Canonical JSON serialization for byte-stable provenance.

    Rules:
    - UTF-8 encoding
    - Sorted keys
    - Stable separators (",", ":")
    - Lists keep their order
    - No trailing whitespace

    Args:
        obj: Python object to serialize

    Returns:
        Canonical JSON string (UTF-8 encoded)
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False  # UTF-8 encoding
    )


def canonical_bytes(obj: Any) -> bytes:
    """Canonical JSON as UTF-8 bytes."""
    return canonical_dumps(obj).encode("utf-8")
