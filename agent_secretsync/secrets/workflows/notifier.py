"""Reload notifications for services depending on rendered files."""
import logging
import os
import socket
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

from ..domains.models import NotifierSpec

logger = logging.getLogger(__name__)


class Reloader(ABC):
    """Makes a dependent service pick up new configuration."""

    @abstractmethod
    def reload(self, name: str) -> None:
        """Reload notifier ``name``. Raises on failure."""


class StatusNotifier(ABC):
    """Observer told once that the first full resolution pass is done."""

    @abstractmethod
    def notify_ready(self) -> None:
        """Signal readiness. Raises on failure."""


class CommandReloader(Reloader):
    """Reloads notifiers with ``systemctl reload <service>`` or a custom command."""

    def __init__(self, notifiers: Dict[str, NotifierSpec]):
        self.notifiers = notifiers

    def command_for(self, name: str) -> List[str]:
        spec = self.notifiers[name]
        if spec.command:
            return list(spec.command)
        return ["systemctl", "reload", spec.service]

    def reload(self, name: str) -> None:
        """
        Run the reload command of notifier ``name``.

        Raises:
            subprocess.CalledProcessError: If the command exits non-zero
            subprocess.TimeoutExpired: If the command outlives the notifier timeout
        """
        command = self.command_for(name)
        timeout = self.notifiers[name].timeout
        logger.info(f"Reloading '{name}': {' '.join(command)}")
        subprocess.run(command, check=True, capture_output=True, text=True, timeout=timeout)


class SystemdNotifier(StatusNotifier):
    """Sends READY=1 to systemd when running as a Type=notify unit."""

    def __init__(self, socket_path: Optional[str] = None):
        self.socket_path = socket_path or os.getenv("NOTIFY_SOCKET")

    def notify_ready(self) -> None:
        if not self.socket_path:
            logger.debug("NOTIFY_SOCKET not set, skipping readiness notification")
            return
        address = self.socket_path
        if address.startswith("@"):
            # Abstract namespace socket
            address = "\0" + address[1:]
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.connect(address)
            sock.sendall(b"READY=1")
        logger.info("Notified systemd readiness")


class NotificationDispatcher:
    """Accumulates notifier names and reloads each once per flush.

    Args:
        reloader: Reload capability; without one, pending names are only logged
    """

    def __init__(self, reloader: Optional[Reloader] = None):
        self.reloader = reloader
        self.pending: Set[str] = set()
        self.status_notifiers: List[StatusNotifier] = []

    def add_status_notifier(self, notifier: StatusNotifier) -> None:
        self.status_notifiers.append(notifier)

    def mark_pending(self, *names: str) -> None:
        self.pending.update(names)

    def flush_pending(self) -> None:
        """
        Reload every pending notifier once and clear the pending set.

        Failures are logged and not retried in this cycle.
        """
        pending, self.pending = sorted(self.pending), set()
        for name in pending:
            if self.reloader is None:
                logger.warning(f"No reloader configured, can't notify '{name}'")
                continue
            try:
                self.reloader.reload(name)
            except Exception as e:
                logger.error(f"Couldn't reload '{name}': {e}")

    def notify_ready(self) -> None:
        for notifier in self.status_notifiers:
            try:
                notifier.notify_ready()
            except Exception as e:
                logger.error(f"Couldn't notify readiness: {e}")
