"""Serialization boundary for document columns.

Columns such as ``nodes.config``, ``workflow_versions.snapshot`` or
``global_config.ai_providers`` hold JSON text the store never inspects. The
store persists and returns that text byte-for-byte; callers that own the
document shape use these helpers to encode and decode it. The store itself
uses them for the one document it owns, ``settings.keywords``.
"""

import json
from typing import Any

from novelflow.db.errors import SerializationError

EMPTY_DOCUMENT = "{}"


def encode_document(value: Any) -> str:
    """Encode a value as document text.

    Raises:
        SerializationError: If the value is not JSON serializable
    """
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to encode document: {e}") from e


def decode_document(text: str | None, expected: type | None = None) -> Any:
    """Decode document text produced by :func:`encode_document`.

    Args:
        text: The stored document text; ``None`` decodes to ``None``
        expected: Optional type the decoded value must be an instance of

    Raises:
        SerializationError: If the text is not valid JSON or has the wrong type
    """
    if text is None:
        return None

    try:
        value = json.loads(text)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to decode document: {e}") from e

    if expected is not None and not isinstance(value, expected):
        raise SerializationError(
            f"Expected {expected.__name__} document, got {type(value).__name__}"
        )
    return value
