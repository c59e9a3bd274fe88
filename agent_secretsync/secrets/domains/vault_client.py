"""HashiCorp Vault store adapter built on hvac."""
import logging
import os
from typing import Any, Dict, Optional

import hvac
import requests
from hvac.exceptions import (
    BadGateway,
    Forbidden,
    InternalServerError,
    InvalidPath,
    InvalidRequest,
    RateLimitExceeded,
    Unauthorized,
    VaultDown,
    VaultError,
    VaultNotInitialized,
)

from .models import SecretResult
from .store import LoginError, SecretStore, StoreRequestError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# hvac raises one exception class per HTTP status it knows about
_VAULT_ERROR_STATUS = (
    (InvalidRequest, 400),
    (Unauthorized, 401),
    (Forbidden, 403),
    (InvalidPath, 404),
    (RateLimitExceeded, 429),
    (InternalServerError, 500),
    (VaultNotInitialized, 501),
    (BadGateway, 502),
    (VaultDown, 503),
)


def vault_error_status(error: VaultError) -> Optional[int]:
    """HTTP status behind an hvac exception, None when hvac didn't say."""
    for error_class, status in _VAULT_ERROR_STATUS:
        if isinstance(error, error_class):
            return status
    return None


def transport_error_status(error: requests.RequestException) -> Optional[int]:
    """Status of the response a requests failure carries, if it got one."""
    response = getattr(error, "response", None)
    if response is None:
        return None
    return response.status_code


def _response_text(response: requests.Response) -> str:
    try:
        text = response.text
    except (AttributeError, ValueError):
        return ""
    if not isinstance(text, str):
        return ""
    return " ".join(text.split())[:200]


class VaultClient(SecretStore):
    """Vault store: token or AppRole login and raw API requests through hvac.

    Args:
        address: Vault address, e.g. https://vault.example.com:8200
            (VAULT_ADDR overrides)
        token: Token to use when no AppRole is configured (VAULT_TOKEN overrides)
        role_id: AppRole role id; enables AppRole login
        secret_id: AppRole secret id
        verify: Verify TLS certificates, or path to a CA bundle
        timeout: Request timeout in seconds
        client: Preconfigured hvac client, mostly for tests
    """

    def __init__(
        self,
        address: str,
        token: Optional[str] = None,
        role_id: Optional[str] = None,
        secret_id: Optional[str] = None,
        verify: Any = True,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[hvac.Client] = None,
    ):
        self.address = (os.getenv("VAULT_ADDR") or address or "").rstrip("/")
        self.role_id = role_id
        self.secret_id = secret_id
        self.verify = verify
        self.timeout = timeout
        self._token = os.getenv("VAULT_TOKEN") or token
        if client is None:
            client = hvac.Client(url=self.address, token=self._token, verify=verify, timeout=timeout)
        else:
            client.token = self._token
        self._client = client

    @classmethod
    def from_config(cls, store: Dict[str, Any], token: Optional[str] = None) -> "VaultClient":
        """Build a client from the ``store`` config section.

        ``token`` is the token persisted in state, used only if the config
        doesn't provide one.
        """
        return cls(
            address=store.get("address", ""),
            token=store.get("token") or token,
            role_id=store.get("role_id"),
            secret_id=store.get("secret_id"),
            verify=store.get("verify", True),
            timeout=store.get("timeout", DEFAULT_TIMEOUT),
        )

    def _set_token(self, token: str) -> None:
        self._token = token
        self._client.token = token

    def login(self) -> None:
        """
        Authenticate against Vault.

        Uses AppRole when a role id is configured, otherwise checks the
        configured token with a token self-lookup.

        Raises:
            LoginError: If authentication fails
        """
        if not self.role_id and not self._token:
            raise LoginError("No Vault token available: set 'token', VAULT_TOKEN or an AppRole")

        try:
            if self.role_id:
                response = self._client.auth.approle.login(
                    role_id=self.role_id,
                    secret_id=self.secret_id,
                    use_token=False,
                )
                auth = response.get("auth") if isinstance(response, dict) else None
                token = auth.get("client_token") if isinstance(auth, dict) else None
                if not token:
                    raise LoginError("AppRole login returned no token")
                self._set_token(token)
                logger.info("Logged in to Vault with AppRole")
                return

            self._client.auth.token.lookup_self()
            logger.info("Vault token is valid")
        except VaultError as e:
            raise LoginError(f"Vault login failed (status {vault_error_status(e)}): {e}")
        except requests.RequestException as e:
            raise LoginError(f"Vault login failed: {e}")

    def get_token(self) -> Optional[str]:
        return self._token

    def _send(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        method = method.upper()
        kwargs = {}
        if data and method != "GET":
            kwargs["json"] = data
        elif data:
            kwargs["params"] = data

        url = f"/v1/{path.lstrip('/')}"
        try:
            response = self._client.adapter.request(method, url, raise_exception=False, **kwargs)
        except VaultError as e:
            raise StoreRequestError(f"{method} {path}: {e}", status_code=vault_error_status(e))
        except requests.RequestException as e:
            raise StoreRequestError(f"{method} {path}: {e}", status_code=transport_error_status(e))

        # hvac hands back the decoded JSON of successful responses and the
        # raw response for errors or bodies that aren't JSON
        if isinstance(response, dict):
            return response
        if not isinstance(response, requests.Response):
            raise StoreRequestError(
                f"{method} {path}: unexpected response body of type {type(response).__name__}",
                status_code=200,
            )
        if not response.ok:
            raise StoreRequestError(
                f"{method} {path}: HTTP {response.status_code} {_response_text(response)}".rstrip(),
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        raise StoreRequestError(
            f"{method} {path}: invalid JSON response: {_response_text(response)}",
            status_code=response.status_code,
        )

    def request(self, method: str, url: str, data: Optional[Dict[str, Any]] = None) -> SecretResult:
        body = self._send(method, url, data)
        secret = body.get("data")
        if secret is None:
            secret = {}
        if not isinstance(secret, dict):
            raise StoreRequestError(f"{method} {url}: 'data' is not an object", status_code=200)
        try:
            lease_duration = int(body.get("lease_duration") or 0)
        except (TypeError, ValueError):
            raise StoreRequestError(f"{method} {url}: invalid lease_duration", status_code=200)
        return SecretResult(
            data=secret,
            lease_duration=lease_duration,
            renewable=bool(body.get("renewable", False)),
        )
