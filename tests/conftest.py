"""Shared fixtures: fake secret store, reloader and readiness observer."""
from pathlib import Path

import pytest

from agent_secretsync.secrets.domains import config_loader, preferences
from agent_secretsync.secrets.domains.models import SecretResult
from agent_secretsync.secrets.domains.store import LoginError, SecretStore
from agent_secretsync.secrets.workflows.notifier import Reloader, StatusNotifier


class FakeStore(SecretStore):
    """Secret store answering from scripted outcomes per URL.

    Each URL maps to a list of outcomes consumed in order; the last one is
    repeated. An outcome is a SecretResult or an exception to raise.
    """

    def __init__(self, outcomes=None, token="s.fake-token", fail_login=False):
        self.outcomes = {url: list(o) for url, o in (outcomes or {}).items()}
        self.token = token
        self.fail_login = fail_login
        self.logged_in = False
        self.requests = []
        self.on_request = None

    def login(self):
        if self.fail_login:
            raise LoginError("bad credentials")
        self.logged_in = True

    def get_token(self):
        return self.token

    def request(self, method, url, data=None):
        self.requests.append((method, url, data))
        if self.on_request is not None:
            self.on_request(method, url, data)
        queue = self.outcomes[url]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeReloader(Reloader):
    def __init__(self, fail=()):
        self.reloaded = []
        self.fail = set(fail)

    def reload(self, name):
        self.reloaded.append(name)
        if name in self.fail:
            raise RuntimeError(f"reload of {name} failed")


class FakeStatusNotifier(StatusNotifier):
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def notify_ready(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("readiness socket gone")


def result(lease_duration=3600, **data):
    return SecretResult(data=data, lease_duration=lease_duration)


@pytest.fixture
def fake_store_factory():
    return FakeStore


@pytest.fixture
def reloader():
    return FakeReloader()


@pytest.fixture
def status_notifier():
    return FakeStatusNotifier()


@pytest.fixture
def temp_home(tmp_path, monkeypatch):
    """Fixture to create a temporary home directory for testing."""
    fake_home = tmp_path / "home"
    fake_home.mkdir()
    monkeypatch.setenv("HOME", str(fake_home))
    monkeypatch.setattr(Path, "home", lambda: fake_home)

    fake_config_dir = fake_home / ".config" / "agent-secretsync"
    monkeypatch.setattr(preferences, "PREFERENCES_DIR", fake_config_dir)
    monkeypatch.setattr(preferences, "PREFERENCES_FILE", fake_config_dir / "preferences.json")
    monkeypatch.setattr(config_loader, "DEFAULT_CONFIG_PATH", fake_config_dir / "config.yml")

    return fake_home
