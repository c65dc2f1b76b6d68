"""Tests for timestamp, hashing, URL and timeout helpers."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from jobmail.utils import (
    CallTimeoutError,
    compute_url_key,
    ensure_utc,
    from_storage,
    hash_string,
    normalize_url,
    parse_iso_datetime,
    posting_url_key,
    run_with_timeout,
    storage_now,
    to_storage,
)


class TestTimestamps:
    """Tests for UTC timestamp helpers."""

    def test_ensure_utc_naive_is_assumed_utc(self):
        dt = ensure_utc(datetime(2025, 11, 4, 12, 0))
        assert dt.tzinfo == timezone.utc
        assert dt.hour == 12

    def test_ensure_utc_converts_offsets(self):
        """Test aware datetimes in other zones are converted."""
        plus_two = timezone(timedelta(hours=2))
        dt = ensure_utc(datetime(2025, 11, 4, 12, 0, tzinfo=plus_two))
        assert dt.hour == 10
        assert dt.tzinfo == timezone.utc

    def test_ensure_utc_none(self):
        assert ensure_utc(None) is None

    def test_storage_format_is_fixed_width(self):
        """Test values with and without microseconds have the same width."""
        a = to_storage(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        b = to_storage(datetime(2025, 11, 4, 12, 0, 0, 123456, tzinfo=timezone.utc))

        assert a == "2025-11-04T12:00:00.000000Z"
        assert len(a) == len(b)
        assert a < b

    def test_storage_round_trip(self):
        dt = datetime(2025, 1, 2, 3, 4, 5, 600000, tzinfo=timezone.utc)
        assert from_storage(to_storage(dt)) == dt

    def test_from_storage_accepts_seconds_precision(self):
        assert from_storage("2025-01-02T03:04:05Z") == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_from_storage_empty(self):
        assert from_storage(None) is None
        assert from_storage("") is None

    def test_storage_now_offset(self):
        """Test a future offset sorts after the present."""
        assert storage_now(60) > storage_now()

    def test_parse_iso_datetime_with_z(self):
        dt = parse_iso_datetime("2025-11-04T10:30:00Z")
        assert dt == datetime(2025, 11, 4, 10, 30, tzinfo=timezone.utc)

    def test_parse_iso_datetime_invalid(self):
        assert parse_iso_datetime("not a date") is None
        assert parse_iso_datetime("   ") is None
        assert parse_iso_datetime(None) is None


class TestHashing:
    """Tests for hashing helpers."""

    def test_hash_string_is_sha256(self):
        assert hash_string("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_compute_url_key_strips_whitespace(self):
        assert compute_url_key(" https://example.com/a ") == compute_url_key("https://example.com/a")


class TestNormalizeUrl:
    """Tests for URL normalization."""

    def test_lowercases_scheme_and_host(self):
        assert normalize_url("HTTPS://Example.COM/Jobs/42") == "https://example.com/Jobs/42"

    def test_drops_tracking_parameters(self):
        url = "https://example.com/jobs/42?utm_source=mail&utm_medium=email&ref=digest&id=7"
        assert normalize_url(url) == "https://example.com/jobs/42?id=7"

    def test_drops_unknown_utm_parameters(self):
        assert normalize_url("https://example.com/a?utm_whatever=1") == "https://example.com/a"

    def test_keeps_parameter_order(self):
        assert normalize_url("https://example.com/a?b=2&a=1") == "https://example.com/a?b=2&a=1"

    def test_drops_fragment_default_port_and_trailing_slash(self):
        assert normalize_url("https://example.com:443/jobs/42/#apply") == "https://example.com/jobs/42"

    def test_keeps_non_default_port(self):
        assert normalize_url("http://example.com:8080/a") == "http://example.com:8080/a"

    def test_empty_path_becomes_root(self):
        assert normalize_url("https://example.com") == "https://example.com/"

    def test_custom_tracking_list(self):
        """Test a custom list replaces the defaults (utm_* is always dropped)."""
        url = "https://example.com/a?ref=x&gh_src=y&utm_source=z"
        assert normalize_url(url, tracking_params=["gh_src"]) == "https://example.com/a?ref=x"

    def test_rejects_relative_url(self):
        with pytest.raises(ValueError, match="Not an absolute URL"):
            normalize_url("/jobs/42")


class TestPostingUrlKey:
    """Tests for posting natural keys."""

    def test_tracking_variants_share_a_key(self):
        a = posting_url_key("https://example.com/jobs/42?utm_source=a")
        b = posting_url_key("https://EXAMPLE.com/jobs/42/?utm_campaign=b#top")
        assert a == b

    def test_different_postings_differ(self):
        assert posting_url_key("https://example.com/jobs/42") != posting_url_key("https://example.com/jobs/43")

    def test_unparseable_url_keyed_by_text(self):
        assert posting_url_key(" not-a-url ") == compute_url_key("not-a-url")


class TestRunWithTimeout:
    """Tests for bounded calls."""

    def test_returns_value(self):
        assert run_with_timeout(lambda a, b: a + b, 1.0, 2, 3) == 5

    def test_reraises_exception(self):
        def fail():
            raise KeyError("missing")

        with pytest.raises(KeyError, match="missing"):
            run_with_timeout(fail, 1.0)

    def test_no_timeout_runs_inline(self):
        """Test None runs in the calling thread."""
        assert run_with_timeout(threading.current_thread, None) is threading.current_thread()

    def test_timeout_raises(self):
        release = threading.Event()
        try:
            with pytest.raises(CallTimeoutError) as exc_info:
                run_with_timeout(release.wait, 0.05, 5, name="slow-call")
        finally:
            release.set()

        assert exc_info.value.timeout == 0.05
        assert "slow-call" in str(exc_info.value)

    def test_custom_error_class(self):
        class SlowError(Exception):
            def __init__(self, message, timeout):
                super().__init__(message)
                self.timeout = timeout

        release = threading.Event()
        try:
            with pytest.raises(SlowError):
                run_with_timeout(release.wait, 0.05, 5, error_cls=SlowError)
        finally:
            release.set()
