"""
Unit tests for destination path resolution.
"""

from pathlib import Path

import pytest

from filepuller.errors import UnsafeKeyError
from filepuller.worker.paths import resolve_destination


class TestResolveDestination:
    """Tests for resolve_destination."""

    def test_plain_key(self, destination: Path):
        assert resolve_destination(destination, "report-42.csv") == (
            destination.resolve() / "report-42.csv"
        )

    def test_nested_key(self, destination: Path):
        assert resolve_destination(destination, "a/b/c.txt") == (
            destination.resolve() / "a" / "b" / "c.txt"
        )

    def test_inner_parent_reference_is_normalized(self, destination: Path):
        assert resolve_destination(destination, "a/../b.txt") == (
            destination.resolve() / "b.txt"
        )

    @pytest.mark.parametrize(
        "key",
        [
            "../../etc/passwd",
            "../sibling.txt",
            "a/../../escape.txt",
            "/etc/passwd",
            "",
            ".",
            "a/..",
            "bad\x00name",
            ".filepuller-report.csv.abc123.part",
        ],
    )
    def test_rejected_keys(self, destination: Path, key: str):
        with pytest.raises(UnsafeKeyError):
            resolve_destination(destination, key)

    def test_symlink_escaping_root_is_rejected(self, destination: Path, tmp_path: Path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (destination / "link").symlink_to(outside, target_is_directory=True)

        with pytest.raises(UnsafeKeyError) as exc_info:
            resolve_destination(destination, "link/file.txt")

        assert exc_info.value.reason == "escapes the destination root"

    def test_existing_directory_is_rejected(self, destination: Path):
        (destination / "reports").mkdir()

        with pytest.raises(UnsafeKeyError) as exc_info:
            resolve_destination(destination, "reports")

        assert exc_info.value.reason == "names an existing directory"

    def test_file_in_parent_path_is_rejected(self, destination: Path):
        (destination / "a").write_bytes(b"x")

        with pytest.raises(UnsafeKeyError) as exc_info:
            resolve_destination(destination, "a/b/c.txt")

        assert exc_info.value.reason == "a is not a directory"

    def test_error_carries_key(self, destination: Path):
        with pytest.raises(UnsafeKeyError) as exc_info:
            resolve_destination(destination, "../../etc/passwd")

        assert exc_info.value.key == "../../etc/passwd"
        assert "../../etc/passwd" in str(exc_info.value)
