"""Unit tests for :mod:`smsrental.providers.normalizers`.

Covers phone normalisation, field lookup, every timestamp shape providers
send (epoch s/ms, ISO, absolute formats, time-only, relative phrases,
garbage fallback), which of them count as exact, lenient number parsing
for catalog prices and stock, and the message plausibility filter.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from smsrental.providers.normalizers import (
    first_present,
    is_plausible_message,
    normalise_phone,
    normalise_text,
    parse_float,
    parse_int,
    parse_timestamp,
    parse_timestamp_exact,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class TestText:
    def test_collapses_whitespace(self) -> None:
        assert normalise_text("  Your code\n  1234 ") == "Your code 1234"

    def test_none_gives_fallback(self) -> None:
        assert normalise_text(None, fallback="?") == "?"
        assert normalise_text("   ", fallback="?") == "?"

    @pytest.mark.parametrize(
        ("number", "prefix", "expected"),
        [
            ("4915112345678", None, "+4915112345678"),
            ("+49 151 1234-5678", None, "+4915112345678"),
            ("15112345678", "49", "+4915112345678"),
            ("4915112345678", "49", "+4915112345678"),
            (4915112345678, None, "+4915112345678"),
            ("", None, ""),
            (None, "49", "+49"),
        ],
    )
    def test_normalise_phone(self, number, prefix, expected) -> None:
        assert normalise_phone(number, prefix) == expected

    def test_first_present_skips_empty(self) -> None:
        raw = {"text": "", "message": None, "messageText": "hi"}
        assert first_present(raw, "text", "message", "messageText") == "hi"
        assert first_present(raw, "missing") is None


class TestNumbers:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(3, 3.0), ("12.50", 12.5), (" 0,9 ", 0.9), ("n/a", None), ("", None), (None, None), (True, None), ("inf", None)],
    )
    def test_parse_float(self, value, expected) -> None:
        assert parse_float(value) == expected

    def test_parse_int_truncates(self) -> None:
        assert parse_int("30") == 30
        assert parse_int(4.9) == 4
        assert parse_int("many") is None


class TestParseTimestamp:
    def test_epoch_seconds(self) -> None:
        assert parse_timestamp(1772366400) == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def test_epoch_milliseconds_string(self) -> None:
        assert parse_timestamp("1772366400000") == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def test_iso_with_z(self) -> None:
        assert parse_timestamp("2026-03-01T09:15:02Z") == datetime(2026, 3, 1, 9, 15, 2, tzinfo=UTC)

    def test_naive_datetime_gets_utc(self) -> None:
        assert parse_timestamp(datetime(2026, 3, 1, 9, 0)).tzinfo is UTC

    @pytest.mark.parametrize(
        "text",
        ["01.03.2026 09:15", "Mar 01, 2026 09:15 AM", "01/03/2026 09:15"],
    )
    def test_absolute_formats(self, text: str) -> None:
        assert parse_timestamp(text, now=NOW) == datetime(2026, 3, 1, 9, 15, tzinfo=UTC)

    def test_time_only_is_today(self) -> None:
        assert parse_timestamp("11:30", now=NOW) == datetime(2026, 3, 1, 11, 30, tzinfo=UTC)

    def test_time_only_in_future_is_yesterday(self) -> None:
        assert parse_timestamp("13:00", now=NOW) == datetime(2026, 2, 28, 13, 0, tzinfo=UTC)

    @pytest.mark.parametrize(
        ("text", "delta"),
        [
            ("5 min ago", timedelta(minutes=5)),
            ("2 hours ago", timedelta(hours=2)),
            ("30 seconds ago", timedelta(seconds=30)),
            ("1 day ago", timedelta(days=1)),
        ],
    )
    def test_relative_phrases(self, text: str, delta: timedelta) -> None:
        assert parse_timestamp(text, now=NOW) == NOW - delta

    @pytest.mark.parametrize("value", [None, "", "yesterday-ish", True])
    def test_unparseable_falls_back_to_now(self, value) -> None:
        assert parse_timestamp(value, now=NOW) == NOW

    @pytest.mark.parametrize(
        ("value", "exact"),
        [
            (1772366400, True),
            ("2026-03-01T09:15:02Z", True),
            ("01.03.2026 09:15", True),
            ("11:30", True),
            ("5 min ago", False),
            ("just now", False),
            (None, False),
        ],
    )
    def test_exact_flag(self, value, exact: bool) -> None:
        assert parse_timestamp_exact(value, now=NOW)[1] is exact


class TestPlausibility:
    def test_real_message_passes(self) -> None:
        assert is_plausible_message("WhatsApp", "Your code is 123-456") is True

    @pytest.mark.parametrize(
        ("sender", "body"),
        [
            ("W", "Your code is 123456"),
            ("WhatsApp", "1234"),
            ("test", "Your code is 123456"),
            ("Sender", "sample"),
            ("Sender", "Lorem ipsum dolor sit amet"),
            ("Sender", "*** --- ***"),
        ],
    )
    def test_furniture_rejected(self, sender: str, body: str) -> None:
        assert is_plausible_message(sender, body) is False
