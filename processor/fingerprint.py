"""Content fingerprints used as the deduplication key for stored events."""
import hashlib
import json
from typing import Any, Dict


def _normalize_numbers(value: Any) -> Any:
    # DynamoDB keeps no int/float distinction, so 2.0 and 2 must hash alike
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _normalize_numbers(val) for key, val in value.items()}
    if isinstance(value, list):
        return [_normalize_numbers(val) for val in value]
    return value


def canonical_json(payload: Dict[str, Any]) -> str:
    """
    Serialize a payload with a stable key order and no insignificant whitespace.

    Integral floats are written as integers.

    Args:
        payload: JSON-compatible dictionary

    Returns:
        Canonical JSON string
    """
    return json.dumps(
        _normalize_numbers(payload),
        ensure_ascii=False,
        sort_keys=True,
        separators=(',', ':')
    )


def compute_fingerprint(payload: Dict[str, Any]) -> str:
    """
    Generate a deterministic fingerprint for an event's content.

    Two payloads produce the same fingerprint only when every field and
    nested value is identical.

    Args:
        payload: Event content without identity or fingerprint fields

    Returns:
        SHA256 hex digest of the canonical serialization
    """
    hash_obj = hashlib.sha256(canonical_json(payload).encode('utf-8'))
    return hash_obj.hexdigest()
