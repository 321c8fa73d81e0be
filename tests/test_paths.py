"""Tests for remote path utilities."""

from __future__ import annotations

import pytest

from sharefs.interfaces import InvalidOperationError
from sharefs.paths import (
    change_extension,
    combine,
    detect_path_traversal,
    get_directory_name,
    get_extension,
    get_file_name,
    get_file_name_without_extension,
    has_extension,
    matches_pattern,
    normalize_path,
    normalize_windows_path,
)


class TestNormalizePath:
    """Canonical remote paths."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("docs/readme.txt", "docs/readme.txt"),
            ("\\Projects\\2024\\report.pdf", "Projects/2024/report.pdf"),
            ("  /docs//a.txt/ ", "docs/a.txt"),
            ("./docs/./a.txt", "docs/a.txt"),
        ],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        """Separators, blanks and dot segments are cleaned up."""
        assert normalize_path(raw) == expected  # noqa: S101

    @pytest.mark.parametrize("raw", ["", "   ", "/", None])
    def test_empty_rejected(self, raw: str | None) -> None:
        """Empty paths are rejected unless the root is allowed."""
        with pytest.raises(InvalidOperationError, match="empty"):
            normalize_path(raw)

    def test_root_allowed_when_requested(self) -> None:
        """allow_root maps blank input to the library root."""
        assert normalize_path("/", allow_root=True) == ""  # noqa: S101

    @pytest.mark.parametrize("raw", ["../secret.txt", "docs/../../x", "a\\..\\b"])
    def test_traversal_rejected(self, raw: str) -> None:
        """Parent-directory segments are never allowed."""
        with pytest.raises(InvalidOperationError, match=r"\.\."):
            normalize_path(raw)

    def test_helpers(self) -> None:
        """Low-level helpers behave as documented."""
        assert normalize_windows_path("a\\b\\c") == "a/b/c"  # noqa: S101
        assert detect_path_traversal(["a", "..", "b"])  # noqa: S101
        assert not detect_path_traversal(("a", "b"))  # noqa: S101


class TestPathHelpers:
    """Name and extension helpers."""

    def test_combine(self) -> None:
        """Segments are joined with single slashes and blanks skipped."""
        assert combine("Projects", "2024/", "/report.pdf") == "Projects/2024/report.pdf"  # noqa: S101
        assert combine("a\\b", None, " ", "c") == "a/b/c"  # noqa: S101

    def test_combine_requires_a_segment(self) -> None:
        """At least one non-blank segment is needed."""
        with pytest.raises(ValueError, match="non-empty"):
            combine("", None)

    def test_names(self) -> None:
        """Directory and file names are split at the last slash."""
        assert get_directory_name("a/b/c.txt") == "a/b"  # noqa: S101
        assert get_directory_name("c.txt") == ""  # noqa: S101
        assert get_directory_name("  ") is None  # noqa: S101
        assert get_file_name("a\\b\\c.txt") == "c.txt"  # noqa: S101
        assert get_file_name(None) is None  # noqa: S101

    def test_extensions(self) -> None:
        """Extensions include the dot and only the last one counts."""
        assert get_extension("a/archive.tar.gz") == ".gz"  # noqa: S101
        assert get_extension("a/README") == ""  # noqa: S101
        assert get_file_name_without_extension("a/archive.tar.gz") == "archive.tar"  # noqa: S101
        assert get_file_name_without_extension("README") == "README"  # noqa: S101
        assert has_extension("x.pdf")  # noqa: S101
        assert not has_extension("x")  # noqa: S101

    def test_change_extension(self) -> None:
        """Extensions are replaced, added or removed."""
        assert change_extension("a/b.txt", ".md") == "a/b.md"  # noqa: S101
        assert change_extension("a/b.txt", "md") == "a/b.md"  # noqa: S101
        assert change_extension("a/b.txt", "") == "a/b"  # noqa: S101
        assert change_extension("b", ".txt") == "b.txt"  # noqa: S101


class TestMatchesPattern:
    """Wildcard matching used by directory listings."""

    @pytest.mark.parametrize(
        ("name", "pattern", "expected"),
        [
            ("Report.PDF", "*.pdf", True),
            ("report.pdf", "*.docx", False),
            ("a1.txt", "a?.txt", True),
            ("a12.txt", "a?.txt", False),
            ("anything", None, True),
            ("anything", "*", True),
            ("anything", "*.*", True),
        ],
    )
    def test_matches(self, name: str, pattern: str | None, expected: bool) -> None:
        """Matching is case-insensitive and supports * and ?."""
        assert matches_pattern(name, pattern) is expected  # noqa: S101
