"""Tests for tornjak.main: command line interface."""

import os

import pytest

from tornjak import main as cli
from tornjak.exceptions import DependencyMissingError

from conftest import FakeGateway, ManualScheduler, MemoryClipboard


@pytest.fixture
def env(clean_env, monkeypatch, tmp_path):
    """Run the CLI against fakes: in-memory gateway and clipboard, manual timers."""
    gateway = FakeGateway()
    sink = MemoryClipboard()
    schedulers = []

    def detached(state_path, backend):
        scheduler = ManualScheduler()
        schedulers.append(scheduler)
        return scheduler

    monkeypatch.setattr(cli, "create_gateway", lambda settings: gateway)
    monkeypatch.setattr(cli, "get_clipboard", lambda backend: sink)
    monkeypatch.setattr(cli, "DetachedScheduler", detached)
    answers = []
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt: answers.pop(0))

    class Env:
        pass

    e = Env()
    e.gateway = gateway
    e.sink = sink
    e.schedulers = schedulers
    e.answers = answers
    e.store = str(tmp_path / "store" / "passwords.gpg")
    e.home = str(tmp_path / "home")
    e.run = lambda *args: cli.main(["--store", e.store] + list(args))
    return e


class TestCli:
    def test_no_args(self, capsys):
        assert cli.main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--version"])
        assert exc.value.code == 0
        assert "tornjak" in capsys.readouterr().out

    def test_add_get_list_delete(self, env, capsys):
        env.answers.append("p1")
        assert env.run("add", "s1", "u1") == 0
        assert "Password added successfully!" in capsys.readouterr().out

        assert env.run("get", "s1") == 0
        out = capsys.readouterr().out
        assert "Username: u1" in out
        assert "cleared in 45 seconds" in out
        assert "p1" not in out
        assert env.sink.text == "p1"

        env.schedulers[-1].timers[0].fire()
        assert env.sink.text == ""

        assert env.run("list") == 0
        assert capsys.readouterr().out.splitlines() == ["Stored services:", "s1"]

        assert env.run("delete", "s1") == 0
        assert "deleted successfully" in capsys.readouterr().out
        assert env.run("list") == 0
        assert capsys.readouterr().out.splitlines() == ["Stored services:"]

    def test_secret_never_on_command_line(self, env):
        env.answers.append("p1")
        with pytest.raises(SystemExit):
            env.run("add", "s1", "u1", "p1")

    def test_timeout_flag(self, env, capsys):
        env.answers.append("p1")
        env.run("add", "s1", "u1")
        assert env.run("--timeout", "10", "get", "s1") == 0
        assert "cleared in 10 seconds" in capsys.readouterr().out
        assert env.schedulers[-1].timers[0].delay == 10

    def test_get_missing_service(self, env, capsys):
        env.answers.append("p1")
        env.run("add", "s1", "u1")
        capsys.readouterr()
        assert env.run("get", "s2") == 1
        assert capsys.readouterr().err.strip() == "Error: No password found for service: s2"

    def test_get_without_store(self, env, capsys):
        assert env.run("get", "s1") == 1
        assert "No password file found" in capsys.readouterr().err

    def test_delete_missing_service_succeeds(self, env, capsys):
        env.answers.append("p1")
        env.run("add", "s1", "u1")
        assert env.run("delete", "nope") == 0
        assert "Nothing was deleted" in capsys.readouterr().out

    def test_ambiguous_key(self, env, capsys):
        env.gateway.identities = ["A", "B"]
        assert env.run("add", "s1", "u1") == 1
        assert "Ambiguous" in capsys.readouterr().err
        assert not os.path.exists(env.store)

    def test_invalid_service(self, env, capsys):
        env.answers.append("p1")
        assert env.run("add", "a:b", "u1") == 1
        assert "may not contain" in capsys.readouterr().err

    def test_empty_password(self, env, capsys):
        env.answers.append("")
        assert env.run("add", "s1", "u1") == 1
        assert "may not be empty" in capsys.readouterr().err

    def test_missing_clipboard(self, env, monkeypatch, capsys):
        def missing(backend):
            raise DependencyMissingError("Clipboard tool not found")

        monkeypatch.setattr(cli, "get_clipboard", missing)
        assert env.run("list") == 1
        assert "Clipboard tool not found" in capsys.readouterr().err

    def test_bad_timeout(self, env, capsys):
        assert env.run("--timeout", "1", "list") == 1
        assert "between" in capsys.readouterr().err

    def test_audit_log(self, env):
        env.answers.append("p1")
        env.run("add", "s1", "u1")
        env.run("get", "s1")
        with open(os.path.join(env.home, "logs", "audit.log"), encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert [line.split(" | ")[1] for line in lines] == ["ADD", "GET"]
        assert all("p1" not in line for line in lines)

    def test_exposure_state_shared_between_invocations(self, env):
        env.answers.extend(["p1", "p2"])
        env.run("add", "s1", "u1")
        env.run("add", "s2", "u2")
        env.run("get", "s1")
        env.run("get", "s2")

        first_timer = env.schedulers[0].timers[0]
        assert first_timer.fire() is False
        assert env.sink.text == "p2"
