import json as basejson
from typing import Any

from .primitives import asPrimitive


def json(value: Any) -> bytes:
	"""Encodes the value as compact JSON, `{"a":1}` rather than `{"a": 1}`."""
	return basejson.dumps(
		asPrimitive(value), separators=(",", ":"), ensure_ascii=False
	).encode("utf8")


# EOF
