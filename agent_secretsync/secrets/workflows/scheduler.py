"""Run loop keeping secrets and the files rendered from them fresh.

States: log in, resolve everything once, then repeatedly wait for the secret
whose lease expires first, renew it and re-render only the files using it.
The loop runs on a single thread; the only blocking points are the wait for
the next expiry (interrupted by ``stop_event``) and the retry delay.
"""
import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from ..domains.config_loader import DEFAULT_RETRY_PERIOD
from ..domains.models import FileSpec, SecretSpec
from ..domains.state import LifecycleState
from ..domains.store import SecretStore
from .materializer import FileMaterializer
from .notifier import NotificationDispatcher
from .resolver import SecretResolver

logger = logging.getLogger(__name__)


class Scheduler:
    """Owns the lifecycle state and drives secret renewal.

    Args:
        store: Secret store
        state: Lifecycle state, usually loaded from disk
        secrets: Configured secrets by name
        files: Configured files
        dispatcher: Notification dispatcher (reloader + readiness observers)
        retry_period: Seconds between attempts on transient store failures
        stop_event: Set to stop the run loop while it waits
        sleep: Retry delay function
        clock: Time source, epoch seconds
    """

    def __init__(
        self,
        store: SecretStore,
        state: LifecycleState,
        secrets: Dict[str, SecretSpec],
        files: Iterable[FileSpec],
        dispatcher: Optional[NotificationDispatcher] = None,
        retry_period: float = DEFAULT_RETRY_PERIOD,
        stop_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.state = state
        self.secrets = secrets
        self.files: Dict[str, FileSpec] = {fc.path: fc for fc in files}
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self.resolver = SecretResolver(store, state, retry_period=retry_period, sleep=sleep)
        self.materializer = FileMaterializer(state, self.dispatcher)

    def stop(self) -> None:
        self.stop_event.set()

    def login(self) -> None:
        """Authenticate and persist the token. Failures propagate."""
        self.store.login()
        self.state.token = self.store.get_token()
        self.state.save_quietly()
        logger.info("Logged in to secret store")

    def _is_expired(self, name: str) -> bool:
        instant = self.state.secrets[name].next_update
        return instant is not None and instant <= self.clock()

    def reconcile(self) -> None:
        """
        Bring the state in line with the configured secrets.

        Missing secrets are resolved, persisted ones are reused (and resolved
        again if their renewal instant already passed), and secrets no longer
        configured are removed. Usages of reused secrets are cleared since
        templates may have changed; rendering files registers them again.
        """
        for name, spec in self.secrets.items():
            if name in self.state.secrets:
                self.state.secrets[name].files_using = []
                if not self._is_expired(name):
                    logger.debug(f"Reusing persisted secret '{name}'")
                    continue
                logger.info(f"Persisted secret '{name}' is due for renewal")
            self.resolver.resolve_with_retry(name, spec)

        for name in list(self.state.secrets):
            if name not in self.secrets:
                logger.info(f"Removing secret '{name}', no longer configured")
                self.state.delete_secret(name)
                self.state.save_quietly()

    def materialize_all(self) -> None:
        for fc in self.files.values():
            self.materializer.materialize(fc)

    def renew(self, name: str) -> None:
        """
        Resolve ``name`` again and re-render every file using it.

        Files are taken from the usage list as it stands after the secret was
        resolved, so they are never rendered with an older value.
        """
        spec = self.secrets.get(name)
        if spec is None:
            logger.warning(f"Secret '{name}' is not configured anymore, dropping it")
            self.state.delete_secret(name)
            self.state.save_quietly()
            return

        logger.info(f"Updating secret '{name}'")
        self.resolver.resolve_with_retry(name, spec)

        for usage in list(self.state.secrets[name].files_using):
            fc = self.files.get(usage.path)
            if fc is None:
                logger.warning(f"File '{usage.path}' uses '{name}' but is not configured, skipping")
                self.state.secrets[name].unregister_usage(usage.path)
                continue
            logger.info(f"Updating file '{usage.path}'")
            self.materializer.materialize(fc)

    def wait_next(self) -> Optional[str]:
        """
        Block until the earliest renewal instant or until stopped.

        Returns:
            Name of the secret to renew, or None if the scheduler was stopped
        """
        secret, instant = self.state.next_update()
        if secret is None:
            logger.info("No secret to update")
            self.stop_event.wait()
            return None

        delay = max(0.0, instant - self.clock())
        logger.debug(f"Next update of '{secret.name}' in {delay:.0f}s")
        if self.stop_event.wait(delay):
            return None
        return secret.name

    def run(self) -> None:
        """
        Run until stopped.

        Raises:
            LoginError: If login fails
            FatalSecretError: If a secret can't be resolved
            ConfigError: If a file is misconfigured
            MaterializeError: If a file can't be written
        """
        self.login()
        self.reconcile()
        self.materialize_all()
        self.dispatcher.notify_ready()

        while True:
            self.dispatcher.flush_pending()
            self.state.save_quietly()

            name = self.wait_next()
            if name is None:
                logger.info("Stopping")
                return
            self.renew(name)
