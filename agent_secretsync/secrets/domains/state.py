"""Lifecycle state: resolved secrets, their leases and the files using them.

State is persisted as a JSON document so that already valid secrets are not
fetched again after a restart:

    {
      "token": "...",
      "secrets": {
        "db": {
          "data": {"password": "..."},
          "timestamp": 1700000000.0,
          "lease_duration": 3600,
          "renewable": false,
          "files_using": [{"path": "/etc/app/db.conf", "priority": 0}]
        }
      }
    }
"""
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .models import SecretResult

logger = logging.getLogger(__name__)

# Secrets are renewed once this fraction of their lease has elapsed
RENEW_FRACTION = 0.75


@dataclass
class FileUsage:
    """A file depending on a secret, with the priority it was registered at."""
    path: str
    priority: int = 0


@dataclass
class SecretState:
    """Runtime record of a resolved secret."""
    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0
    lease_duration: int = 0
    renewable: bool = False
    files_using: List[FileUsage] = field(default_factory=list)

    @property
    def next_update(self) -> Optional[float]:
        """Instant (epoch seconds) at which the secret must be renewed.

        None for secrets without a lease, which never need renewal.
        """
        if self.lease_duration <= 0:
            return None
        return self.timestamp + self.lease_duration * RENEW_FRACTION

    def register_usage(self, path: str, priority: int = 0) -> None:
        """Record that ``path`` uses this secret.

        At most one entry per path is kept; entries stay ordered by priority,
        then by registration order.
        """
        self.unregister_usage(path)
        index = len(self.files_using)
        for i, usage in enumerate(self.files_using):
            if usage.priority > priority:
                index = i
                break
        self.files_using.insert(index, FileUsage(path=path, priority=priority))

    def unregister_usage(self, path: str) -> None:
        self.files_using = [u for u in self.files_using if u.path != path]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "timestamp": self.timestamp,
            "lease_duration": self.lease_duration,
            "renewable": self.renewable,
            "files_using": [{"path": u.path, "priority": u.priority} for u in self.files_using],
        }

    @classmethod
    def from_dict(cls, name: str, raw: Dict[str, Any]) -> "SecretState":
        return cls(
            name=name,
            data=dict(raw.get("data") or {}),
            timestamp=float(raw.get("timestamp", 0.0)),
            lease_duration=int(raw.get("lease_duration", 0)),
            renewable=bool(raw.get("renewable", False)),
            files_using=[
                FileUsage(path=u["path"], priority=int(u.get("priority", 0)))
                for u in raw.get("files_using") or []
            ],
        )


class LifecycleState:
    """Authoritative record of resolved secrets, owned by the scheduler.

    Args:
        path: Where the state is persisted. None keeps it in memory only.
        clock: Time source used to timestamp resolutions
    """

    def __init__(self, path: Optional[str] = None, clock=time.time):
        self.path = Path(path) if path else None
        self.token: Optional[str] = None
        self.secrets: Dict[str, SecretState] = {}
        self._clock = clock

    @classmethod
    def load(cls, path: str, clock=time.time) -> "LifecycleState":
        """
        Load state from ``path``.

        A missing file yields an empty state.

        Raises:
            ValueError: If the file exists but is not a valid state document
        """
        state = cls(path, clock=clock)
        if not state.path.exists():
            logger.info(f"No previous state found at {state.path}, starting empty")
            return state

        try:
            with open(state.path, 'r') as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse state file {state.path}: {e}")

        if not isinstance(raw, dict):
            raise ValueError(f"State file {state.path} does not contain an object")

        state.token = raw.get("token")
        secrets = raw.get("secrets") or {}
        if not isinstance(secrets, dict):
            raise ValueError(f"State file {state.path} has invalid 'secrets': expected an object")
        for name, secret in secrets.items():
            try:
                state.secrets[name] = SecretState.from_dict(name, secret)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ValueError(f"Invalid entry for secret '{name}' in state file {state.path}: {e!r}")
        logger.info(f"Loaded state with {len(state.secrets)} secrets from {state.path}")
        return state

    def set_secret(self, name: str, result: SecretResult) -> SecretState:
        """Store a fresh resolution of ``name``, keeping its registered usages."""
        secret = self.secrets.get(name)
        if secret is None:
            secret = SecretState(name=name)
            self.secrets[name] = secret
        secret.data = dict(result.data)
        secret.lease_duration = result.lease_duration
        secret.renewable = result.renewable
        secret.timestamp = self._clock()
        return secret

    def delete_secret(self, name: str) -> None:
        self.secrets.pop(name, None)

    def replace_usages(self, path: str, priority: int, secret_names) -> None:
        """Make ``secret_names`` the only secrets registered as used by ``path``."""
        names = set(secret_names)
        for secret in self.secrets.values():
            if secret.name in names:
                secret.register_usage(path, priority)
            else:
                secret.unregister_usage(path)

    def next_update(self) -> Tuple[Optional[SecretState], Optional[float]]:
        """Return the secret expiring first and the instant it must be renewed."""
        selected, instant = None, None
        for secret in self.secrets.values():
            candidate = secret.next_update
            if candidate is None:
                continue
            if instant is None or candidate < instant:
                selected, instant = secret, candidate
        return selected, instant

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "secrets": {name: s.to_dict() for name, s in self.secrets.items()},
        }

    def save(self) -> None:
        """
        Persist the state atomically.

        The document is written to a temporary file next to the target,
        flushed to disk and moved over the previous state.
        """
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def save_quietly(self) -> None:
        """Persist the state, logging failures instead of raising them."""
        try:
            self.save()
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Couldn't save state: {e}")
