from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


# ---------------------------------------------------------------------
# Deterministic canonical JSON + SHA256 hashing (audit-grade)
#
# - stable floats (no 0.30000000004 drift)
# - sorted keys
# - utf-8, no whitespace variance
#
# NOTE: single source of truth for hashing and float quantization.
# ---------------------------------------------------------------------


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def quantize(x: Any, digits: int = 6) -> float:
    """Deterministic ROUND_HALF_UP quantization for floats."""
    try:
        d = Decimal(str(float(x))).quantize(Decimal(10) ** Decimal(-digits), rounding=ROUND_HALF_UP)
        return float(d)
    except (InvalidOperation, TypeError, ValueError):
        return 0.0


def _normalize(obj: Any) -> Any:
    """Recursively normalize objects for deterministic JSON.

    - dict keys are coerced to str
    - lists/tuples keep their order (ordering determinism is handled upstream)
    - floats and Decimals become fixed-precision strings
    - objects with ``to_dict`` are expanded
    """
    if obj is None:
        return None

    if isinstance(obj, (bool, int, str)):
        return obj

    if isinstance(obj, (bytes, bytearray)):
        return {"__bytes_sha256": sha256_bytes(bytes(obj))}

    if isinstance(obj, (Decimal, float)):
        if isinstance(obj, float):
            if obj != obj:  # NaN
                return "NaN"
            if obj in (float("inf"), float("-inf")):
                return "Infinity" if obj > 0 else "-Infinity"
        try:
            q = Decimal(str(obj)).quantize(Decimal(10) ** -12, rounding=ROUND_HALF_UP)
            return format(q, "f")
        except InvalidOperation:
            return "0"

    if isinstance(obj, (list, tuple)):
        return [_normalize(x) for x in obj]

    if isinstance(obj, dict) or hasattr(obj, "items"):
        return {str(k): _normalize(v) for k, v in obj.items()}

    # numpy / pandas scalars
    if hasattr(obj, "item") and callable(getattr(obj, "item")):
        return _normalize(obj.item())

    if hasattr(obj, "to_dict") and callable(getattr(obj, "to_dict")):
        return _normalize(obj.to_dict())

    return str(obj)


def canonical_json(obj: Any) -> str:
    """Deterministic JSON encoding with stable floats."""
    return json.dumps(
        _normalize(obj),
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    )


def sha256_json(obj: Any) -> str:
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()
