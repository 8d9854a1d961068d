from __future__ import annotations

import json
import math


def _reject_constant(name: str):
    raise ValueError(f"invalid JSON constant {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number out of range: {text}")
    return value


def encode(obj) -> str:
    return json.dumps(obj, ensure_ascii=False, allow_nan=False, separators=(",", ":"))


def decode(data: str | bytes):
    # Only standard JSON; NaN, Infinity and overflowing numbers are rejected.
    return json.loads(data, parse_constant=_reject_constant, parse_float=_finite_float)
