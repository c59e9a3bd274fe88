"""Secret resolution with transient/fatal classification and retries."""
import logging
import os
import socket
import time
from typing import Any, Callable, Dict

import jinja2

from ..domains.config_loader import DEFAULT_RETRY_PERIOD
from ..domains.models import SecretSpec
from ..domains.state import LifecycleState
from ..domains.store import (
    FatalSecretError,
    SecretResolutionError,
    SecretStore,
    StoreRequestError,
    TransientSecretError,
)

logger = logging.getLogger(__name__)

# Request data values may reference the environment and the local hostname
_data_env = jinja2.Environment(undefined=jinja2.StrictUndefined, keep_trailing_newline=True)
_data_env.globals.update(
    env=lambda name: os.environ.get(name, ""),
    hostname=socket.gethostname,
)


def resolve_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Expand string values of request data as templates.

    Non-string values are passed through. A value that fails to expand is
    logged and kept unexpanded.

    Example:
        {"common_name": "{{ hostname() }}.example.com"} -> {"common_name": "web1.example.com"}
    """
    result = {}
    for key, value in data.items():
        if not isinstance(value, str):
            result[key] = value
            continue
        try:
            result[key] = _data_env.from_string(value).render()
        except jinja2.TemplateError as e:
            logger.warning(f"When resolving data template '{value}' for '{key}': {e}")
            result[key] = value
    return result


def classify(name: str, error: StoreRequestError):
    """Map a failed store request to a transient or fatal resolution error."""
    status = error.status_code
    if status is None:
        # Connection error, no response from the server
        return TransientSecretError(name, error)
    if status // 100 == 5:
        # Store behind an unavailable proxy, or sealed
        return TransientSecretError(name, error)
    # 4xx: wrong request or permissions. Anything else is unexpected too.
    return FatalSecretError(name, error)


class SecretResolver:
    """Resolves secrets into the lifecycle state.

    Args:
        store: Secret store to request secrets from
        state: Lifecycle state receiving resolved secrets
        retry_period: Seconds to wait between attempts on transient failures
        sleep: Delay function, replaced in tests
    """

    def __init__(
        self,
        store: SecretStore,
        state: LifecycleState,
        retry_period: float = DEFAULT_RETRY_PERIOD,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.state = state
        self.retry_period = retry_period
        self._sleep = sleep

    def resolve(self, name: str, spec: SecretSpec) -> None:
        """
        Perform one resolution attempt of secret ``name``.

        On success the result is stored in the state and the state is saved
        (save failures are only logged).

        Raises:
            TransientSecretError: No response or 5xx; worth retrying
            FatalSecretError: 4xx; retrying can't help
        """
        try:
            result = self.store.request(spec.method, spec.url, resolve_data(spec.data))
        except StoreRequestError as e:
            raise classify(name, e) from e

        self.state.set_secret(name, result)
        self.state.save_quietly()
        logger.info(f"Resolved secret '{name}' (lease {result.lease_duration}s)")

    def resolve_with_retry(self, name: str, spec: SecretSpec) -> int:
        """
        Resolve ``name``, retrying transient failures indefinitely.

        Returns:
            Number of attempts made

        Raises:
            FatalSecretError: As soon as an attempt fails fatally
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                self.resolve(name, spec)
                return attempts
            except SecretResolutionError as e:
                if not e.retryable:
                    raise
                logger.warning(f"{e}; retrying in {self.retry_period}s (attempt {attempts})")
                self._sleep(self.retry_period)
