from __future__ import annotations

from pathlib import Path
from unittest.mock import patch
import tempfile
import unittest

from sitepress.backends import (
    GrepSearchBackend,
    PythonCopyBackend,
    PythonSearchBackend,
    RsyncCopyBackend,
    copy_backend,
    search_backend,
)
from sitepress.command_runner import CommandError, CommandResult, CommandRunner, RecordingCommandRunner
from sitepress.errors import ConfigurationError, ToolUnavailableError


class CannedRunner(CommandRunner):
    def __init__(self, returncode: int, stdout: str = "") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.history: list[list[str]] = []

    def run(self, command, *, cwd=None, env=None, check=True, timeout=None):  # type: ignore[override]
        self.history.append(list(command))
        return CommandResult(command=list(command), returncode=self.returncode, stdout=self.stdout, stderr="boom")


class PythonCopyBackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.source = self.root / "source"
        self.destination = self.root / "destination"
        (self.source / ".git").mkdir(parents=True)
        (self.source / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        (self.source / "css").mkdir()
        (self.source / "index.html").write_text("home\n")
        (self.source / "css" / "site.css").write_text("body {}\n")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_copies_tree_without_excluded_entries(self) -> None:
        PythonCopyBackend().copy(self.source, self.destination, exclude=[".git"])
        self.assertEqual((self.destination / "index.html").read_text(), "home\n")
        self.assertEqual((self.destination / "css" / "site.css").read_text(), "body {}\n")
        self.assertFalse((self.destination / ".git").exists())

    def test_plain_copy_keeps_extraneous_files(self) -> None:
        self.destination.mkdir()
        (self.destination / "old.html").write_text("old\n")
        PythonCopyBackend().copy(self.source, self.destination)
        self.assertTrue((self.destination / "old.html").exists())

    def test_mirror_deletes_extraneous_files_except_excluded(self) -> None:
        (self.destination / "stale").mkdir(parents=True)
        (self.destination / "stale" / "x.html").write_text("x\n")
        (self.destination / "old.html").write_text("old\n")
        (self.destination / "uploads").mkdir()
        (self.destination / "uploads" / "photo.jpg").write_bytes(b"jpg")

        PythonCopyBackend().copy(self.source, self.destination, exclude=[".git", "uploads"], mirror=True)

        self.assertFalse((self.destination / "stale").exists())
        self.assertFalse((self.destination / "old.html").exists())
        self.assertTrue((self.destination / "uploads" / "photo.jpg").exists())
        self.assertTrue((self.destination / "index.html").exists())

    def test_nested_exclude_patterns(self) -> None:
        PythonCopyBackend().copy(self.source, self.destination, exclude=["css/*.css"])
        self.assertTrue((self.destination / "css").is_dir())
        self.assertFalse((self.destination / "css" / "site.css").exists())


class RsyncCopyBackendTests(unittest.TestCase):
    def test_builds_rsync_command(self) -> None:
        runner = RecordingCommandRunner()
        with tempfile.TemporaryDirectory() as temp:
            destination = Path(temp) / "out"
            RsyncCopyBackend(runner).copy(Path("/src"), destination, exclude=[".git", "uploads"], mirror=True)
            self.assertTrue(destination.is_dir())
        self.assertEqual(
            runner.commands[0].command,
            ["rsync", "-a", "--delete", "--exclude=.git", "--exclude=uploads", "/src/", f"{destination}/"],
        )


class SearchBackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_python_search_skips_binary_files(self) -> None:
        (self.root / "a.txt").write_text("needle\n")
        (self.root / "b.bin").write_bytes(b"\0needle")
        (self.root / "c.txt").write_text("hay\n")
        self.assertEqual(PythonSearchBackend().find_files(self.root, "needle"), [self.root / "a.txt"])

    def test_python_search_of_missing_root(self) -> None:
        self.assertEqual(PythonSearchBackend().find_files(self.root / "missing", "x"), [])

    def test_grep_lists_matching_files(self) -> None:
        runner = CannedRunner(0, "/site/a.html\n/site/b.html\n")
        found = GrepSearchBackend(runner).find_files(Path("/site"), "x+")
        self.assertEqual(found, [Path("/site/a.html"), Path("/site/b.html")])
        self.assertEqual(runner.history[0], ["grep", "-l", "-I", "-r", "-E", "-e", "x+", "/site"])

    def test_grep_without_matches(self) -> None:
        self.assertEqual(GrepSearchBackend(CannedRunner(1)).find_files(Path("/site"), "x"), [])

    def test_grep_failure_propagates(self) -> None:
        with self.assertRaises(CommandError):
            GrepSearchBackend(CannedRunner(2)).find_files(Path("/site"), "(")


class BackendSelectionTests(unittest.TestCase):
    def test_named_backends(self) -> None:
        self.assertIsInstance(copy_backend("python"), PythonCopyBackend)
        self.assertIsInstance(search_backend("python"), PythonSearchBackend)

    def test_unknown_backend(self) -> None:
        with self.assertRaises(ConfigurationError):
            copy_backend("robocopy")
        with self.assertRaises(ConfigurationError):
            search_backend("ripgrep")

    def test_unavailable_backend(self) -> None:
        with patch("sitepress.backends.shutil.which", return_value=None):
            with self.assertRaises(ToolUnavailableError) as ctx:
                copy_backend("rsync")
        self.assertEqual(ctx.exception.tool, "rsync")

    def test_auto_prefers_external_tools(self) -> None:
        with patch("sitepress.backends.shutil.which", return_value="/usr/bin/tool"):
            self.assertIsInstance(copy_backend("auto"), RsyncCopyBackend)
            self.assertIsInstance(search_backend("auto"), GrepSearchBackend)

    def test_auto_falls_back_to_python(self) -> None:
        with patch("sitepress.backends.shutil.which", return_value=None):
            self.assertIsInstance(copy_backend("auto"), PythonCopyBackend)
            self.assertIsInstance(search_backend("auto"), PythonSearchBackend)


if __name__ == "__main__":
    unittest.main()
