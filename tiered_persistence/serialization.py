"""
Record serialization.

Records are opaque JSON values. The local cache stores them wrapped in
a small envelope with a write timestamp, the same layout the web client
used, so entries written by older clients still decode.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

from .exceptions import SerializationError

ENVELOPE_VERSION = "1.0"
_ENVELOPE_FIELDS = {"data", "timestamp", "version"}


def encode_record(key: str, value: Any) -> str:
    """Serialize a record to JSON text.

    Raises:
        SerializationError: If the value is not representable as strict JSON
    """
    try:
        return json.dumps(value, allow_nan=False, separators=(",", ":"))
    except (TypeError, ValueError, RecursionError) as e:
        raise SerializationError(key, e) from e


def canonical_json(value: Any) -> str:
    """Stable encoding used for byte-for-byte comparisons."""
    return json.dumps(value, sort_keys=True, allow_nan=False, separators=(",", ":"))


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class StoredEnvelope:
    """A record as written to the local cache."""

    data: Any
    timestamp: int
    scope: str | None = None
    version: str = ENVELOPE_VERSION

    @classmethod
    def wrap(cls, key: str, value: Any, scope: str | None) -> tuple[StoredEnvelope, str]:
        """Wrap and encode a value in one step.

        Returns both the envelope and its JSON text.
        """
        envelope = cls(data=value, timestamp=now_ms(), scope=scope)
        return envelope, envelope.encode(key)

    def encode(self, key: str) -> str:
        return encode_record(
            key,
            {
                "data": self.data,
                "timestamp": self.timestamp,
                "version": self.version,
                "scope": self.scope,
            },
        )

    @classmethod
    def decode(cls, text: str) -> StoredEnvelope:
        """Decode local cache text.

        Unwrapped legacy values are returned as an envelope with timestamp 0.

        Raises:
            ValueError: If the text is not valid JSON
        """
        parsed = json.loads(text)
        if isinstance(parsed, dict) and _ENVELOPE_FIELDS.issubset(parsed):
            return cls(
                data=parsed["data"],
                timestamp=int(parsed.get("timestamp") or 0),
                scope=parsed.get("scope", parsed.get("userId")),
                version=str(parsed.get("version", ENVELOPE_VERSION)),
            )
        return cls(data=parsed, timestamp=0)
