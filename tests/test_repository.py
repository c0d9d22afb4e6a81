from __future__ import annotations

from pathlib import Path
from unittest.mock import patch
import io
import shutil
import tarfile
import tempfile
import unittest

from sitepress.command_runner import CommandError, CommandResult, CommandRunner, SubprocessCommandRunner
from sitepress.errors import PreconditionError, ToolUnavailableError, TransferLimitError
from sitepress.repository import RepositoryCache, clone_directory_name


class FakeGitRunner(CommandRunner):
    def __init__(self, files: dict[str, str] | None = None, *, fail_on: str | None = None) -> None:
        self.history: list[list[str]] = []
        self.timeouts: list[float | None] = []
        self.files = files if files is not None else {"index.html": "<html></html>\n"}
        self.fail_on = fail_on

    def run(self, command, *, cwd=None, env=None, check=True, timeout=None):  # type: ignore[override]
        cmd_list = list(command)
        self.history.append(cmd_list)
        self.timeouts.append(timeout)
        if self.fail_on and self.fail_on in cmd_list:
            raise CommandError(CommandResult(command=cmd_list, returncode=128, stdout="", stderr="fatal"))
        if cmd_list[:3] == ["git", "clone", "--mirror"]:
            Path(cmd_list[-1]).mkdir(parents=True)
        elif "archive" in cmd_list:
            output = next(arg for arg in cmd_list if arg.startswith("--output="))[len("--output="):]
            with tarfile.open(output, "w") as handle:
                for name, text in self.files.items():
                    data = text.encode("utf-8")
                    info = tarfile.TarInfo(name)
                    info.size = len(data)
                    handle.addfile(info, io.BytesIO(data))
        return CommandResult(command=cmd_list, returncode=0, stdout="", stderr="")

    def commands(self, subcommand: str) -> list[list[str]]:
        return [cmd for cmd in self.history if subcommand in cmd]


class LocalCloneTests(unittest.TestCase):
    def test_uses_a_unique_path(self) -> None:
        repo = RepositoryCache("src/path", cache_root="/tmp")
        self.assertEqual(repo.local_clone, Path("/tmp/repo_src_path_b6a728b1177"))

    def test_cleans_the_https_protocol_off_the_path(self) -> None:
        repo = RepositoryCache("https://github.com/razor-x/palimpsest.git", cache_root="/tmp")
        self.assertEqual(
            repo.local_clone,
            Path("/tmp/repo_https___github.com_razor-x_palimpsest.git_02809b17c50"),
        )

    def test_cleans_the_scp_style_separator_off_the_path(self) -> None:
        repo = RepositoryCache("git@github.com:razor-x/palimpsest.git", cache_root="/tmp")
        self.assertEqual(
            repo.local_clone,
            Path("/tmp/repo_git@github.com_razor-x_palimpsest.git_b9e1373c404"),
        )

    def test_is_a_pure_function_of_cache_root_and_source(self) -> None:
        first = RepositoryCache("src/path", cache_root="/tmp").local_clone
        again = RepositoryCache("src/path", cache_root="/tmp").local_clone
        other_source = RepositoryCache("src/other", cache_root="/tmp").local_clone
        other_cache = RepositoryCache("src/path", cache_root="/var/tmp").local_clone
        self.assertEqual(first, again)
        self.assertNotEqual(first, other_source)
        self.assertNotEqual(first, other_cache)

    def test_is_none_without_source_or_cache(self) -> None:
        self.assertIsNone(RepositoryCache(None, cache_root="/tmp").local_clone)
        self.assertIsNone(RepositoryCache("src/path", cache_root=None).local_clone)

    def test_directory_name_separates_similar_locators(self) -> None:
        self.assertNotEqual(clone_directory_name("a/b"), clone_directory_name("a_b"))


class RepositoryCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.cache_root = self.root / "cache"
        which_patcher = patch("sitepress.repository.shutil.which", return_value="/usr/bin/git")
        which_patcher.start()
        self.addCleanup(which_patcher.stop)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _repo(self, runner: FakeGitRunner, **kwargs) -> RepositoryCache:
        return RepositoryCache("https://example.com/site.git", cache_root=self.cache_root, runner=runner, **kwargs)

    def test_mirror_clones_only_when_absent(self) -> None:
        runner = FakeGitRunner()
        repo = self._repo(runner)
        self.assertEqual(repo.mirror(), repo.local_clone)
        repo.mirror()
        clones = runner.commands("clone")
        self.assertEqual(len(clones), 1)
        self.assertEqual(clones[0], ["git", "clone", "--mirror", "--", "https://example.com/site.git", str(repo.local_clone)])

    def test_mirror_requires_source(self) -> None:
        repo = RepositoryCache(None, cache_root=self.cache_root, runner=FakeGitRunner())
        with self.assertRaises(PreconditionError):
            repo.mirror()

    def test_update_mirrors_then_fetches(self) -> None:
        runner = FakeGitRunner()
        repo = self._repo(runner)
        repo.update()
        self.assertEqual(runner.history[0][:3], ["git", "clone", "--mirror"])
        self.assertEqual(runner.history[1], ["git", "--git-dir", str(repo.local_clone), "remote", "update", "--prune"])

    def test_update_can_skip_fetch(self) -> None:
        runner = FakeGitRunner()
        repo = self._repo(runner)
        repo.update(fetch=False)
        self.assertEqual(runner.commands("remote"), [])

    def test_extract_writes_tree_at_reference(self) -> None:
        runner = FakeGitRunner({"index.html": "home\n", "css/site.css": "body {}\n"})
        repo = self._repo(runner)
        destination = self.root / "out"
        repo.extract(destination, "my_feature")

        archive = runner.commands("archive")[0]
        self.assertEqual(archive[-1], "my_feature")
        self.assertEqual((destination / "index.html").read_text(), "home\n")
        self.assertEqual((destination / "css" / "site.css").read_text(), "body {}\n")
        self.assertFalse((destination / ".git").exists())

    def test_extract_updates_first(self) -> None:
        runner = FakeGitRunner()
        repo = self._repo(runner)
        repo.extract(self.root / "out", "main")
        subcommands = [cmd[3] if cmd[1] == "--git-dir" else cmd[1] for cmd in runner.history]
        self.assertEqual(subcommands, ["clone", "remote", "archive"])

    def test_extract_defaults_to_primary_branch(self) -> None:
        runner = FakeGitRunner()
        repo = self._repo(runner)
        with patch.object(RepositoryCache, "_primary_branch", return_value="trunk"):
            repo.extract(self.root / "out")
        self.assertEqual(runner.commands("archive")[0][-1], "trunk")

    def test_extract_rejects_oversized_archives(self) -> None:
        runner = FakeGitRunner({"big.bin": "x" * 4096})
        repo = self._repo(runner, max_transfer_bytes=1024)
        with self.assertRaises(TransferLimitError):
            repo.extract(self.root / "out", "main")
        self.assertFalse((self.root / "out" / "big.bin").exists())

    def test_commands_receive_timeout(self) -> None:
        runner = FakeGitRunner()
        repo = self._repo(runner, timeout=12.5)
        repo.extract(self.root / "out", "main")
        self.assertEqual(set(runner.timeouts), {12.5})

    def test_external_failures_propagate(self) -> None:
        runner = FakeGitRunner(fail_on="archive")
        repo = self._repo(runner)
        with self.assertRaises(CommandError) as ctx:
            repo.extract(self.root / "out", "missing-ref")
        self.assertEqual(ctx.exception.result.returncode, 128)

    def test_missing_git_is_fatal(self) -> None:
        repo = self._repo(FakeGitRunner())
        with patch("sitepress.repository.shutil.which", return_value=None):
            with self.assertRaises(ToolUnavailableError):
                repo.mirror()

    def test_lock_file_lives_next_to_clone(self) -> None:
        repo = self._repo(FakeGitRunner())
        repo.mirror()
        lock = repo.local_clone.parent / f"{repo.local_clone.name}.lock"
        self.assertTrue(lock.exists())


@unittest.skipUnless(shutil.which("git"), "git is not installed")
class RepositoryCacheGitTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.origin = self.root / "origin"
        self.origin.mkdir()
        env = {
            "GIT_AUTHOR_NAME": "Test",
            "GIT_AUTHOR_EMAIL": "test@example.com",
            "GIT_COMMITTER_NAME": "Test",
            "GIT_COMMITTER_EMAIL": "test@example.com",
        }
        runner = SubprocessCommandRunner()
        runner.run(["git", "init", "--initial-branch", "trunk"], cwd=self.origin, env=env)
        (self.origin / "index.html").write_text("v1\n")
        runner.run(["git", "add", "index.html"], cwd=self.origin, env=env)
        runner.run(["git", "commit", "-m", "initial"], cwd=self.origin, env=env)
        runner.run(["git", "tag", "v1"], cwd=self.origin, env=env)
        (self.origin / "index.html").write_text("v2\n")
        runner.run(["git", "commit", "-am", "second"], cwd=self.origin, env=env)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_mirror_and_extract_real_repository(self) -> None:
        repo = RepositoryCache(str(self.origin), cache_root=self.root / "cache")
        repo.extract(self.root / "at-tag", "v1")
        repo.extract(self.root / "at-head")

        self.assertEqual(repo.primary_branch(), "trunk")
        self.assertEqual((self.root / "at-tag" / "index.html").read_text(), "v1\n")
        self.assertEqual((self.root / "at-head" / "index.html").read_text(), "v2\n")
        self.assertFalse((self.root / "at-head" / ".git").exists())

    def test_unknown_reference_propagates(self) -> None:
        repo = RepositoryCache(str(self.origin), cache_root=self.root / "cache")
        with self.assertRaises(CommandError):
            repo.extract(self.root / "out", "no-such-branch")


if __name__ == "__main__":
    unittest.main()
