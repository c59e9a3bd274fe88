"""Domain models for secret distribution."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_FILE_MODE = 0o600

# Seconds a reload command may run before it is killed
DEFAULT_RELOAD_TIMEOUT = 60.0


@dataclass(frozen=True)
class SecretSpec:
    """A secret to fetch from the secret store."""
    name: str
    url: str
    method: str = "GET"
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FileSpec:
    """A file rendered from secrets."""
    path: str
    template: Optional[str] = None
    template_file: Optional[str] = None
    mode: int = 0
    notify: List[str] = field(default_factory=list)
    priority: int = 0

    @property
    def effective_mode(self) -> int:
        """Configured mode, or the conservative default when unset."""
        return self.mode or DEFAULT_FILE_MODE


@dataclass(frozen=True)
class NotifierSpec:
    """A reload target triggered when a file it depends on changes."""
    name: str
    service: Optional[str] = None
    command: Optional[List[str]] = None
    timeout: float = DEFAULT_RELOAD_TIMEOUT


@dataclass
class SecretResult:
    """Result of a secret store request."""
    data: Dict[str, Any]
    lease_duration: int = 0
    renewable: bool = False
