"""
Unit Tests: Event Encoder

Tests:
    - 32-bit polynomial hash over UTF-16 code units
    - Identifier derivation and range
"""

import pytest

from requestiq.analytics.encoder import identifier_for, identity_source, string_hash32
from requestiq.tests.conftest import T0, make_event


class TestStringHash32:
    """Tests for the signed 32-bit string hash."""

    @pytest.mark.parametrize("text,expected", [
        ("", 0),
        ("a", 97),
        ("hello", 99162322),
        ("Aa", 2112),
        ("BB", 2112),
        ("polygenelubricants", -(2 ** 31)),
    ])
    def test_known_values(self, text, expected):
        assert string_hash32(text) == expected

    def test_astral_character_hashes_surrogate_pair(self):
        # U+1F600 is D83D DE00 in UTF-16
        assert string_hash32("\U0001F600") == 0xD83D * 31 + 0xDE00

    def test_result_is_signed_32_bit(self):
        value = string_hash32("x" * 500)

        assert -(2 ** 31) <= value < 2 ** 31


class TestIdentifier:
    """Tests for event identifier derivation."""

    def test_source_string(self):
        event = make_event(path="/orders", ip="1.2.3.4")

        assert identity_source(event) == f"{T0}:/orders:1.2.3.4"

    def test_missing_ip_is_unknown(self):
        assert identity_source(make_event(ip=None)) == f"{T0}:/a:unknown"
        assert identifier_for(make_event(ip=None)) == identifier_for(make_event(ip="unknown"))

    def test_deterministic(self):
        assert identifier_for(make_event()) == identifier_for(make_event())

    def test_method_and_status_do_not_matter(self):
        a = make_event(method="GET", status_code=200)
        b = make_event(method="POST", status_code=500)

        assert identifier_for(a) == identifier_for(b)

    def test_timestamp_changes_identifier(self):
        assert identifier_for(make_event(timestamp=T0)) != identifier_for(make_event(timestamp=T0 + 1))

    @pytest.mark.parametrize("offset", range(0, 50_000, 997))
    def test_range(self, offset):
        value = identifier_for(make_event(timestamp=T0 + offset, path=f"/p/{offset}"))

        assert 0 <= value < 2 ** 32


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
