"""Tests for notification dispatch and the reload/readiness adapters."""
import socket
import subprocess
import sys
from unittest import mock

import pytest

from conftest import FakeReloader, FakeStatusNotifier
from agent_secretsync.secrets.domains.models import DEFAULT_RELOAD_TIMEOUT, NotifierSpec
from agent_secretsync.secrets.workflows.notifier import (
    CommandReloader,
    NotificationDispatcher,
    SystemdNotifier,
)


class TestNotificationDispatcher:

    def test_duplicate_marks_collapse(self):
        reloader = FakeReloader()
        dispatcher = NotificationDispatcher(reloader)
        dispatcher.mark_pending("app", "proxy")
        dispatcher.mark_pending("app")

        dispatcher.flush_pending()

        assert sorted(reloader.reloaded) == ["app", "proxy"]
        assert dispatcher.pending == set()

    def test_failures_are_logged_and_cleared(self, caplog):
        reloader = FakeReloader(fail={"app"})
        dispatcher = NotificationDispatcher(reloader)
        dispatcher.mark_pending("app", "proxy")

        dispatcher.flush_pending()
        dispatcher.flush_pending()

        assert sorted(reloader.reloaded) == ["app", "proxy"]
        assert dispatcher.pending == set()
        assert "Couldn't reload 'app'" in caplog.text

    def test_without_reloader(self, caplog):
        dispatcher = NotificationDispatcher()
        dispatcher.mark_pending("app")

        dispatcher.flush_pending()

        assert dispatcher.pending == set()
        assert "No reloader configured" in caplog.text

    def test_notify_ready_reaches_every_observer(self, caplog):
        failing, ok = FakeStatusNotifier(fail=True), FakeStatusNotifier()
        dispatcher = NotificationDispatcher()
        dispatcher.add_status_notifier(failing)
        dispatcher.add_status_notifier(ok)

        dispatcher.notify_ready()

        assert failing.calls == 1
        assert ok.calls == 1
        assert "Couldn't notify readiness" in caplog.text


class TestCommandReloader:

    @pytest.fixture
    def reloader(self):
        return CommandReloader({
            "app": NotifierSpec(name="app", service="app.service"),
            "proxy": NotifierSpec(name="proxy", command=["pkill", "-HUP", "haproxy"]),
        })

    def test_service_uses_systemctl(self, reloader):
        with mock.patch("subprocess.run") as run:
            reloader.reload("app")

        run.assert_called_once_with(
            ["systemctl", "reload", "app.service"],
            check=True, capture_output=True, text=True, timeout=DEFAULT_RELOAD_TIMEOUT,
        )

    def test_custom_command(self, reloader):
        with mock.patch("subprocess.run") as run:
            reloader.reload("proxy")

        assert run.call_args[0][0] == ["pkill", "-HUP", "haproxy"]

    def test_unknown_notifier(self, reloader):
        with pytest.raises(KeyError):
            reloader.reload("missing")

    def test_command_failure_propagates(self, reloader):
        error = subprocess.CalledProcessError(1, ["systemctl"])
        with mock.patch("subprocess.run", side_effect=error):
            with pytest.raises(subprocess.CalledProcessError):
                reloader.reload("app")

    def test_hanging_command_is_killed_after_timeout(self):
        reloader = CommandReloader({
            "slow": NotifierSpec(
                name="slow",
                command=[sys.executable, "-c", "import time; time.sleep(30)"],
                timeout=0.2,
            ),
        })

        with pytest.raises(subprocess.TimeoutExpired):
            reloader.reload("slow")

    def test_timed_out_reload_does_not_block_dispatch(self, caplog):
        """A hanging reload is logged and the remaining notifiers still run."""
        reloader = CommandReloader({
            "fast": NotifierSpec(name="fast", command=[sys.executable, "-c", "pass"]),
            "slow": NotifierSpec(
                name="slow",
                command=[sys.executable, "-c", "import time; time.sleep(30)"],
                timeout=0.2,
            ),
        })
        dispatcher = NotificationDispatcher(reloader)
        dispatcher.mark_pending("slow", "fast")

        dispatcher.flush_pending()

        assert dispatcher.pending == set()
        assert "Couldn't reload 'slow'" in caplog.text
        assert "timed out" in caplog.text
        assert "Couldn't reload 'fast'" not in caplog.text


class TestSystemdNotifier:

    def test_noop_without_socket(self, monkeypatch):
        monkeypatch.delenv("NOTIFY_SOCKET", raising=False)
        SystemdNotifier().notify_ready()

    def test_sends_ready(self, tmp_path):
        path = str(tmp_path / "notify.sock")
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as server:
            server.bind(path)

            SystemdNotifier(path).notify_ready()

            assert server.recv(64) == b"READY=1"
