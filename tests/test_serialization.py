"""Tests for record serialization and the local envelope."""

import json
import math

import pytest

from tiered_persistence.exceptions import SerializationError
from tiered_persistence.serialization import (
    StoredEnvelope,
    canonical_json,
    encode_record,
)


class TestEncodeRecord:
    def test_compact_json(self) -> None:
        assert encode_record("orders", [{"id": "o1"}]) == '[{"id":"o1"}]'

    @pytest.mark.parametrize("value", [math.nan, -math.inf, {"when": object()}, {1j: 1}])
    def test_unrepresentable_values(self, value) -> None:
        with pytest.raises(SerializationError) as exc_info:
            encode_record("orders", value)

        assert exc_info.value.key == "orders"
        assert "cause" in exc_info.value.details

    def test_circular_reference(self) -> None:
        value: list = []
        value.append(value)

        with pytest.raises(SerializationError):
            encode_record("orders", value)


class TestCanonicalJson:
    def test_key_order_is_irrelevant(self) -> None:
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})


class TestStoredEnvelope:
    def test_wrap(self) -> None:
        envelope, text = StoredEnvelope.wrap("orders", ["o1"], "user-42")

        parsed = json.loads(text)
        assert parsed["data"] == ["o1"]
        assert parsed["scope"] == "user-42"
        assert parsed["version"] == "1.0"
        assert parsed["timestamp"] == envelope.timestamp

    def test_decode_wrapped(self) -> None:
        _, text = StoredEnvelope.wrap("orders", {"a": 1}, "user-42")

        envelope = StoredEnvelope.decode(text)

        assert envelope.data == {"a": 1}
        assert envelope.scope == "user-42"

    def test_decode_web_client_format(self) -> None:
        text = json.dumps(
            {"data": [1, 2], "timestamp": 1700000000000, "version": "1.0", "userId": "u-9"}
        )

        envelope = StoredEnvelope.decode(text)

        assert envelope.data == [1, 2]
        assert envelope.timestamp == 1700000000000
        assert envelope.scope == "u-9"

    def test_decode_legacy_unwrapped(self) -> None:
        envelope = StoredEnvelope.decode('{"theme": "dark"}')

        assert envelope.data == {"theme": "dark"}
        assert envelope.timestamp == 0

    def test_decode_invalid_json(self) -> None:
        with pytest.raises(ValueError):
            StoredEnvelope.decode("{broken")
