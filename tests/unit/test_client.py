from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from gitchain.core.config import GitSettings
from gitchain.core.result import CommandFailedError, Err, Ok, ProcessSpawnError
from gitchain.git import install
from gitchain.git.client import GitClient
from gitchain.git.models import GitConfigSource, ValidateGitInstallResult, Version
from gitchain.tasks.chain import ChainState
from tests.mocks.fake_runner import FakeProcessRunner


@pytest.fixture
def fake_runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def client(fake_runner: FakeProcessRunner, tmp_path: Path) -> GitClient:
    settings = GitSettings(user_cache_path=tmp_path / "cache")
    return GitClient(fake_runner, settings=settings, working_dir=tmp_path, platform="linux")


@pytest.fixture
def git_binary(tmp_path: Path) -> Path:
    binary = tmp_path / "bin" / "git"
    binary.parent.mkdir()
    binary.write_text("#!/bin/sh\n", encoding="utf-8")
    return binary


class TestBatchedStaging:
    """Staging many paths is split into sequential invocations."""

    @pytest.mark.asyncio
    async def test_twelve_thousand_paths_make_three_invocations(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        files = [f"assets/file_{i}.bin" for i in range(12_000)]

        result = await client.add(files).run()

        assert result.is_ok()
        assert len(fake_runner.calls) == 3
        sizes = [len(call.args) - 2 for call in fake_runner.calls]
        assert sizes == [5000, 5000, 2000]
        assert fake_runner.args_of(0)[:2] == ("add", "--")
        assert fake_runner.args_of(2)[-1] == "assets/file_11999.bin"

    @pytest.mark.asyncio
    async def test_failed_batch_prevents_the_next(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        fake_runner.respond(["add"], returncode=128, stderr="fatal: Unable to create index.lock")
        fake_runner.respond(["add"], times=1)
        files = [f"f{i}" for i in range(12_000)]

        chain = client.add(files)
        result = await chain.run()

        assert isinstance(result, Err)
        assert isinstance(result.error, CommandFailedError)
        assert "index.lock" in result.error.stderr
        assert len(fake_runner.calls) == 2
        assert chain.state is ChainState.FAILED

    @pytest.mark.asyncio
    async def test_add_and_commit_skips_commit_when_add_fails(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        fake_runner.respond(["add"], returncode=1, stderr="fatal: pathspec 'x' did not match")

        result = await client.add_and_commit(["x"], "Add x").run()

        assert isinstance(result, Err)
        assert [call.args[0] for call in fake_runner.calls] == ["add"]

    @pytest.mark.asyncio
    async def test_add_and_commit_runs_commit_after_add(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        fake_runner.respond(["commit"], stdout="[main abc123] Add x\n")

        result = await client.add_and_commit(["x"], "Add x", "details").run()

        assert result == Ok("[main abc123] Add x")
        assert fake_runner.args_of(1) == ("commit", "-m", "Add x", "-m", "details")

    @pytest.mark.asyncio
    async def test_empty_add_spawns_nothing(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        assert await client.add([]).run() == Ok("")
        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_remove_keeps_working_tree(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        await client.remove(["a.txt"]).run()
        assert fake_runner.args_of(0) == ("rm", "--cached", "--quiet", "--", "a.txt")


class TestInstallValidation:
    @pytest.mark.asyncio
    async def test_missing_path_spawns_nothing(
        self, client: GitClient, fake_runner: FakeProcessRunner, tmp_path: Path
    ) -> None:
        result = await client.validate_git_install(tmp_path / "missing" / "git").run()

        assert result == Ok(ValidateGitInstallResult(False, None, None))
        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_valid_install(
        self, client: GitClient, fake_runner: FakeProcessRunner, git_binary: Path
    ) -> None:
        fake_runner.respond(["--version"], stdout="git version 2.30.1.windows.1\n")
        fake_runner.respond(["lfs", "version"], stdout="git-lfs/2.3.4 (GitHub; darwin amd64; go 1.8.3)\n")

        result = (await client.validate_git_install(git_binary).run()).unwrap()

        assert result.is_valid
        assert result.git_version == Version((2, 30, 1))
        assert result.git_lfs_version == Version((2, 3, 4))
        assert all(call.executable == str(git_binary) for call in fake_runner.calls)

    @pytest.mark.asyncio
    async def test_old_git_is_invalid_but_reported(
        self, client: GitClient, fake_runner: FakeProcessRunner, git_binary: Path
    ) -> None:
        fake_runner.respond(["--version"], stdout="git version 2.9.5\n")
        fake_runner.respond(["lfs", "version"], stdout="git-lfs/3.4.0 (GitHub; linux amd64)\n")

        result = (await client.validate_git_install(git_binary).run()).unwrap()

        assert not result.is_valid
        assert result.git_version == Version((2, 9, 5))
        assert result.git_lfs_version == Version((3, 4, 0))

    @pytest.mark.asyncio
    async def test_missing_lfs_folds_into_invalid(
        self, client: GitClient, fake_runner: FakeProcessRunner, git_binary: Path
    ) -> None:
        fake_runner.respond(["--version"], stdout="git version 2.43.0\n")
        fake_runner.respond(["lfs", "version"], returncode=1, stderr="git: 'lfs' is not a git command.")

        chain = client.validate_git_install(git_binary)
        result = (await chain.run()).unwrap()

        assert chain.state is ChainState.SUCCEEDED
        assert result == ValidateGitInstallResult(False, Version((2, 43, 0)), None)

    @pytest.mark.asyncio
    async def test_existence_checked_when_run(
        self, client: GitClient, fake_runner: FakeProcessRunner, tmp_path: Path
    ) -> None:
        fake_runner.respond(["--version"], stdout="git version 2.43.0\n")
        fake_runner.respond(["lfs", "version"], stdout="git-lfs/3.4.0 (GitHub; linux amd64)\n")
        binary = tmp_path / "later" / "git"
        chain = client.validate_git_install(binary)

        binary.parent.mkdir()
        binary.write_text("#!/bin/sh\n", encoding="utf-8")
        result = (await chain.run()).unwrap()

        assert result.is_valid
        assert len(fake_runner.calls) == 2

    @pytest.mark.asyncio
    async def test_removed_before_run_is_missing(
        self, client: GitClient, fake_runner: FakeProcessRunner, git_binary: Path
    ) -> None:
        chain = client.validate_git_install(git_binary)
        git_binary.unlink()

        result = await chain.run()

        assert result == Ok(ValidateGitInstallResult(False, None, None))
        assert fake_runner.calls == []


class TestInstallDiscovery:
    @pytest.mark.asyncio
    async def test_configured_path_short_circuits(
        self, fake_runner: FakeProcessRunner, tmp_path: Path
    ) -> None:
        configured = tmp_path / "custom" / "git"
        client = GitClient(fake_runner, settings=GitSettings(executable_path=configured))

        assert await client.find_git_installation().run() == Ok(configured)
        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_probe_hit_skips_search(
        self, client: GitClient, fake_runner: FakeProcessRunner, monkeypatch: Any
    ) -> None:
        monkeypatch.setattr(install, "probe_git_candidates", lambda *_: Path("/usr/local/bin/git"))

        assert await client.find_git_installation().run() == Ok(Path("/usr/local/bin/git"))
        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_to_which(
        self, client: GitClient, fake_runner: FakeProcessRunner, monkeypatch: Any
    ) -> None:
        monkeypatch.setattr(install, "probe_git_candidates", lambda *_: None)
        fake_runner.respond(["git"], stdout="/usr/bin/git\n")

        result = await client.find_git_installation().run()

        assert result == Ok(Path("/usr/bin/git"))
        assert fake_runner.calls[0].executable == "which"

    @pytest.mark.asyncio
    async def test_nothing_found_is_not_a_failure(
        self, client: GitClient, fake_runner: FakeProcessRunner, monkeypatch: Any
    ) -> None:
        monkeypatch.setattr(install, "probe_git_candidates", lambda *_: None)
        fake_runner.respond(["git"], returncode=1)

        chain = client.find_git_installation()

        assert await chain.run() == Ok(None)
        assert chain.state is ChainState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_windows_uses_where(self, fake_runner: FakeProcessRunner, tmp_path: Path) -> None:
        client = GitClient(
            fake_runner, settings=GitSettings(user_cache_path=tmp_path), platform="win32"
        )
        fake_runner.respond(["git"], stdout="C:\\Program Files\\Git\\cmd\\git.exe\r\n")

        await client.find_git_installation().run()

        assert fake_runner.calls[0].executable == "where"


class TestConfig:
    @pytest.mark.asyncio
    async def test_unset_key_is_none(self, client: GitClient, fake_runner: FakeProcessRunner) -> None:
        fake_runner.respond(["config"], returncode=1)

        result = await client.get_config("user.signingkey", GitConfigSource.LOCAL).run()

        assert result == Ok(None)
        assert fake_runner.args_of(0) == ("config", "--local", "--get", "user.signingkey")

    @pytest.mark.asyncio
    async def test_unspecified_source_adds_no_flag(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        fake_runner.respond(["config"], stdout="true\n")
        assert await client.get_config("core.bare", GitConfigSource.NON_SPECIFIED).run() == Ok("true")
        assert fake_runner.args_of(0) == ("config", "--get", "core.bare")

    @pytest.mark.asyncio
    async def test_user_and_email_read_in_order(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        fake_runner.respond(["config", "--global", "--get", "user.name"], stdout="Ada Lovelace\n")
        fake_runner.respond(["config", "--global", "--get", "user.email"], stdout="ada@example.com\n")

        result = await client.get_config_user_and_email().run()

        assert result == Ok(("Ada Lovelace", "ada@example.com"))
        assert [call.args[-1] for call in fake_runner.calls] == ["user.name", "user.email"]

    @pytest.mark.asyncio
    async def test_missing_or_failed_reads_leave_holes(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        fake_runner.respond(["config", "--global", "--get", "user.name"], returncode=1)
        fake_runner.respond(
            ["config", "--global", "--get", "user.email"], returncode=3, stderr="error: bad config"
        )

        chain = client.get_config_user_and_email()

        assert await chain.run() == Ok((None, None))
        assert chain.state is ChainState.SUCCEEDED
        assert len(fake_runner.calls) == 2


class TestCommandShapes:
    @pytest.mark.asyncio
    async def test_push_sets_upstream(self, client: GitClient, fake_runner: FakeProcessRunner) -> None:
        await client.push("origin", "main").run()
        assert fake_runner.args_of(0) == ("push", "--set-upstream", "origin", "main")

    @pytest.mark.asyncio
    async def test_pull_without_branch(self, client: GitClient, fake_runner: FakeProcessRunner) -> None:
        await client.pull("origin", None).run()
        assert fake_runner.args_of(0) == ("pull", "origin")

    @pytest.mark.asyncio
    async def test_delete_unmerged_branch(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        await client.delete_branch("feature", delete_unmerged=True).run()
        assert fake_runner.args_of(0) == ("branch", "-D", "feature")

    @pytest.mark.asyncio
    async def test_unlock_force(self, client: GitClient, fake_runner: FakeProcessRunner) -> None:
        await client.unlock("art/hero.psd", True).run()
        assert fake_runner.args_of(0) == ("lfs", "unlock", "art/hero.psd", "--force")

    @pytest.mark.asyncio
    async def test_local_locks(self, client: GitClient, fake_runner: FakeProcessRunner) -> None:
        fake_runner.respond(["lfs", "locks"], stdout="[]")
        assert await client.list_locks(True).run() == Ok([])
        assert fake_runner.args_of(0) == ("lfs", "locks", "--json", "--local")

    @pytest.mark.asyncio
    async def test_remote_branches(self, client: GitClient, fake_runner: FakeProcessRunner) -> None:
        fake_runner.respond(["for-each-ref"], stdout="origin/HEAD\norigin/main\n")
        result = await client.list_branches(remote=True).run()
        assert result == Ok(["origin/HEAD", "origin/main"])
        assert fake_runner.args_of(0)[-1] == "refs/remotes"

    @pytest.mark.asyncio
    async def test_commands_run_in_working_dir(
        self, client: GitClient, fake_runner: FakeProcessRunner, tmp_path: Path
    ) -> None:
        await client.fetch("origin").run()
        assert fake_runner.calls[0].working_dir == tmp_path
        assert fake_runner.calls[0].executable == "git"

    @pytest.mark.asyncio
    async def test_spawn_failure_is_failed(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        fake_runner.fail_spawn(["-c", "core.quotepath=false", "status"])
        chain = client.status()
        result = await chain.run()
        assert isinstance(result, Err)
        assert isinstance(result.error, ProcessSpawnError)
        assert result.error.message == "git not found"
        assert chain.state is ChainState.FAILED

    @pytest.mark.asyncio
    async def test_cancel_stops_pending_commands(
        self, client: GitClient, fake_runner: FakeProcessRunner
    ) -> None:
        chain = client.fetch("origin")
        client.cancel()

        await chain.run()

        assert chain.state is ChainState.CANCELLED
        assert fake_runner.calls == []
