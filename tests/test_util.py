"""Tests for utility functions."""

from datetime import datetime, timedelta, timezone

import pytest

from reduct._util import (
    build_path_with_params,
    label_value_to_str,
    normalize_labels,
    parse_api_version,
    quote_path_segment,
    unix_timestamp_from_any,
    unix_timestamp_now,
)


class TestUnixTimestamp:
    """Tests for unix_timestamp_from_any."""

    def test_int_is_microseconds(self) -> None:
        assert unix_timestamp_from_any(1_700_000_000_000_000) == 1_700_000_000_000_000

    def test_float_is_seconds(self) -> None:
        assert unix_timestamp_from_any(1.5) == 1_500_000

    def test_datetime(self) -> None:
        value = datetime(2024, 1, 1, 0, 0, 0, 123, tzinfo=timezone.utc)
        assert unix_timestamp_from_any(value) == 1_704_067_200_000_123

    def test_naive_datetime_is_utc(self) -> None:
        assert unix_timestamp_from_any(datetime(1970, 1, 1, 0, 0, 1)) == 1_000_000

    def test_offset_datetime(self) -> None:
        value = datetime(1970, 1, 1, 1, 0, 0, tzinfo=timezone(timedelta(hours=1)))
        assert unix_timestamp_from_any(value) == 0

    def test_iso_string(self) -> None:
        assert unix_timestamp_from_any("1970-01-01T00:00:02Z") == 2_000_000

    def test_bool_is_rejected(self) -> None:
        with pytest.raises(TypeError):
            unix_timestamp_from_any(True)

    def test_unsupported_type(self) -> None:
        with pytest.raises(TypeError):
            unix_timestamp_from_any([1])  # type: ignore[arg-type]

    def test_now(self) -> None:
        before = int(datetime.now(timezone.utc).timestamp() * 1_000_000)
        assert unix_timestamp_now() >= before - 1


class TestLabels:
    """Tests for label value conversion."""

    def test_values(self) -> None:
        assert label_value_to_str(True) == "true"
        assert label_value_to_str(False) == "false"
        assert label_value_to_str(3) == "3"
        assert label_value_to_str(0.5) == "0.5"
        assert label_value_to_str("x") == "x"

    def test_normalize(self) -> None:
        assert normalize_labels(None) == {}
        assert normalize_labels({"a": 1, "b": True}) == {"a": "1", "b": "true"}


class TestApiVersion:
    """Tests for parse_api_version."""

    def test_valid(self) -> None:
        assert parse_api_version("1.18") == (1, 18)
        assert parse_api_version("1.18.2") == (1, 18)

    def test_invalid(self) -> None:
        assert parse_api_version(None) is None
        assert parse_api_version("") is None
        assert parse_api_version("1") is None
        assert parse_api_version("a.b") is None

    def test_ordering(self) -> None:
        assert parse_api_version("1.9") < (1, 18)


class TestBuildPath:
    """Tests for build_path_with_params."""

    def test_no_params(self) -> None:
        assert build_path_with_params("/b/x", {}) == "/b/x"
        assert build_path_with_params("/b/x", {"ts": None}) == "/b/x"

    def test_params(self) -> None:
        path = build_path_with_params("/b/x/e", {"ts": 10, "head": True})
        assert path == "/b/x/e?ts=10&head=true"

    def test_values_are_quoted(self) -> None:
        assert build_path_with_params("/p", {"q": "a b&c"}) == "/p?q=a+b%26c"


class TestQuotePathSegment:
    """Tests for quote_path_segment."""

    def test_plain_name(self) -> None:
        assert quote_path_segment("sensor-1_a.b~c") == "sensor-1_a.b~c"

    @pytest.mark.parametrize(
        ("name", "quoted"),
        [
            ("cam#1", "cam%231"),
            ("a?b", "a%3Fb"),
            ("a/b", "a%2Fb"),
            ("a b", "a%20b"),
            ("50%", "50%25"),
        ],
    )
    def test_reserved_characters(self, name: str, quoted: str) -> None:
        assert quote_path_segment(name) == quoted

    def test_utf8(self) -> None:
        assert quote_path_segment("température") == "temp%C3%A9rature"
