import json
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any


class StrictJSONEncoder(json.JSONEncoder):
    """
    JSON Encoder that prioritizes Fidelity over Flexibility.

    RULES:
    1. Dates MUST be ISO 8601 strings (UTC).
    2. Enums MUST use their .value.
    3. Decimals are emitted as strings so consensus timestamps keep
       nanosecond precision.
    4. Sets -> Lists (sorted for determinism).
    5. Bytes -> UTF-8 text with replacement (payload previews only).
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(list(obj))
        if isinstance(obj, (bytes, bytearray)):
            return bytes(obj).decode("utf-8", errors="replace")
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if hasattr(obj, "__dataclass_fields__"):
            from dataclasses import asdict
            return asdict(obj)

        return super().default(obj)


def canonical_json(obj: Any) -> str:
    """
    Byte-stable serialization: sorted keys, compact separators.
    Identical values always produce identical text.
    """
    return json.dumps(
        obj,
        cls=StrictJSONEncoder,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compact_json(obj: Any) -> str:
    """Insertion-ordered compact JSON, as written to the log."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def serialized_size(obj: Any) -> int:
    """UTF-8 byte length of the compact serialization."""
    return len(compact_json(obj).encode("utf-8"))
