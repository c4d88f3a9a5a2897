"""Unit tests for utility functions."""

import hashlib
from datetime import datetime
from pathlib import Path

import pytest

from imegasync.utils import (
    calculate_checksum,
    epoch_to_iso,
    format_size,
    is_hidden_name,
    is_hidden_path,
    is_safe_name,
    iso_to_epoch,
    parse_iso_timestamp,
)


class TestIsoToEpoch:
    """Tests for iso_to_epoch function."""

    def test_utc_suffix(self):
        assert iso_to_epoch("1970-01-01T00:01:00Z") == 60.0

    def test_explicit_offset(self):
        assert iso_to_epoch("1970-01-01T01:00:00+01:00") == 0.0

    def test_naive_is_utc(self):
        assert iso_to_epoch("1970-01-01T00:00:10") == 10.0

    def test_milliseconds(self):
        assert iso_to_epoch("1970-01-01T00:00:01.500Z") == 1.5

    @pytest.mark.parametrize("value", [None, "", "not a date", "2025-13-45T00:00:00Z"])
    def test_invalid(self, value):
        assert iso_to_epoch(value) is None

    def test_epoch_to_iso_is_parsed_back(self):
        assert iso_to_epoch(epoch_to_iso(1700000000.25)) == 1700000000.25


class TestParseIsoTimestamp:
    """Tests for parse_iso_timestamp function."""

    def test_returns_naive_local_datetime(self):
        result = parse_iso_timestamp("2025-01-15T10:30:00.000Z")

        assert isinstance(result, datetime)
        assert result.tzinfo is None
        assert result == datetime.fromtimestamp(iso_to_epoch("2025-01-15T10:30:00Z"))

    def test_none_and_empty(self):
        assert parse_iso_timestamp(None) is None
        assert parse_iso_timestamp("") is None

    def test_invalid(self):
        assert parse_iso_timestamp("yesterday") is None


class TestFormatSize:
    """Tests for format_size function."""

    def test_bytes(self):
        assert format_size(256) == "256 B"

    def test_kilobytes(self):
        assert format_size(1536) == "1.5 KB"

    def test_megabytes(self):
        assert format_size(5 * 1024 * 1024) == "5.0 MB"

    def test_gigabytes(self):
        assert format_size(2 * 1024**3) == "2.0 GB"


class TestHidden:
    """Tests for hidden name detection."""

    @pytest.mark.parametrize(
        "name,expected",
        [(".DS_Store", True), (".git", True), ("a.txt", False), ("notes.", False)],
    )
    def test_is_hidden_name(self, name, expected):
        assert is_hidden_name(name) is expected

    def test_hidden_segment(self):
        assert is_hidden_path("/sync/.git/index")
        assert not is_hidden_path("/sync/docs/a.txt")

    def test_segments_above_root_are_ignored(self):
        root = Path("/home/.user/sync")
        assert not is_hidden_path(root / "a.txt", root=root)
        assert is_hidden_path(root / ".cache" / "a.txt", root=root)

    def test_path_outside_root(self):
        assert is_hidden_path("/elsewhere/.x", root=Path("/sync"))


class TestSafeName:
    """Tests for remote name validation."""

    @pytest.mark.parametrize("name", ["a.txt", "notes.", "with space", "..dots"])
    def test_plain_names(self, name):
        assert is_safe_name(name)

    @pytest.mark.parametrize(
        "name",
        ["", ".", "..", "sub/a.txt", "sub/../../x.txt", "/etc/passwd", "a/"],
    )
    def test_names_leaving_the_folder(self, name):
        assert not is_safe_name(name)


def test_calculate_checksum(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"x" * 200_000)

    assert calculate_checksum(path) == hashlib.sha256(b"x" * 200_000).hexdigest()


def test_calculate_checksum_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        calculate_checksum(tmp_path / "missing")
