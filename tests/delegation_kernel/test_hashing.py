"""Tests for the hashing module."""

from datetime import datetime, timezone

from delegation_kernel.hashing import content_hash, stable_json_dumps


class TestContentHash:
    def test_key_order_does_not_matter(self) -> None:
        a = {"b": 1, "a": {"z": 3, "y": 2}}
        b = {"a": {"y": 2, "z": 3}, "b": 1}
        assert content_hash(a) == content_hash(b)

    def test_different_content_different_hash(self) -> None:
        assert content_hash({"subject": "A"}) != content_hash({"subject": "B"})

    def test_returns_64_char_hex(self) -> None:
        result = content_hash({"test": "data"})
        assert len(result) == 64
        assert all(c in "0123456789abcdef" for c in result)

    def test_truncate(self) -> None:
        full = content_hash(["x"])
        assert content_hash(["x"], truncate=16) == full[:16]


class TestStableJsonDumps:
    def test_compact_sorted_and_unicode(self) -> None:
        assert stable_json_dumps({"b": "é", "a": 1}) == '{"a":1,"b":"é"}'

    def test_non_json_values_fall_back_to_str(self) -> None:
        stamp = datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert stable_json_dumps({"at": stamp}) == '{"at":"2024-01-02 00:00:00+00:00"}'
