"""Tests for the version module."""

import pytest

from assetsync.version import (
    VersionParseError,
    compare_versions,
    is_newer,
    parse_version,
)


class TestParseVersion:
    """Tests for parse_version function."""

    def test_parses_dotted_numbers(self) -> None:
        assert parse_version("1.2.10") == (1, 2, 10)

    def test_single_segment(self) -> None:
        assert parse_version("2") == (2,)

    @pytest.mark.parametrize("version", ["", "1..2", "1.x", "1.2-beta", "-1.0", "1.٣"])
    def test_rejects_invalid_segments(self, version: str) -> None:
        """Empty, signed, non-numeric and non-ASCII segments are rejected."""
        with pytest.raises(VersionParseError):
            parse_version(version)

    def test_parse_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_version("abc")


class TestCompareVersions:
    """Tests for compare_versions function."""

    def test_missing_segments_count_as_zero(self) -> None:
        assert compare_versions("1.0", "1.0.0") == 0

    def test_numeric_not_lexicographic(self) -> None:
        """Segment 10 is greater than segment 9."""
        assert compare_versions("1.10", "1.9") == 1

    def test_less_than(self) -> None:
        assert compare_versions("1.1.9", "1.2.0") == -1


class TestIsNewer:
    """Tests for is_newer function."""

    @pytest.mark.parametrize(
        "server,current,expected",
        [
            ("1.2.0", "1.1.9", True),
            ("1.0", "1.0.0", False),
            ("2", "1.9.9", True),
            ("1.1.9", "1.2.0", False),
            ("1.0.1", "1.0", True),
        ],
    )
    def test_segment_ordering(self, server: str, current: str, expected: bool) -> None:
        assert is_newer(server, current) is expected

    @pytest.mark.parametrize("version", ["0.0.0", "1.0.0", "3.14.159"])
    def test_irreflexive(self, version: str) -> None:
        """A version is never newer than itself."""
        assert is_newer(version, version) is False

    def test_unparseable_server_version_is_not_newer(self, caplog: pytest.LogCaptureFixture) -> None:
        """Parse failures fail closed and are logged."""
        assert is_newer("2.0.beta", "1.0.0") is False
        assert "Version comparison failed" in caplog.text

    def test_unparseable_current_version_is_not_newer(self) -> None:
        assert is_newer("2.0.0", "garbage") is False
