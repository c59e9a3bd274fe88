"""GCP Secret Manager store adapter."""
import json
import logging
import os
from typing import Any, Dict, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import secretmanager

from .models import SecretResult
from .store import LoginError, SecretStore, StoreRequestError

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 3600


class GCPSecretStore(SecretStore):
    """Secret store backed by GCP Secret Manager.

    GCP secrets carry no lease, so every secret is given ``refresh_interval``
    seconds before it is fetched again.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        service_account_path: Optional[str] = None,
        refresh_interval: int = DEFAULT_REFRESH_INTERVAL,
        client: Optional[secretmanager.SecretManagerServiceClient] = None,
    ):
        self.project_id = os.getenv("GCP_PROJECT") or project_id
        self.service_account_path = service_account_path
        self.refresh_interval = refresh_interval
        self._client = client

    @classmethod
    def from_config(cls, store: Dict[str, Any]) -> "GCPSecretStore":
        return cls(
            project_id=store.get("project_id"),
            service_account_path=store.get("service_account_path"),
            refresh_interval=int(store.get("refresh_interval", DEFAULT_REFRESH_INTERVAL)),
        )

    @property
    def client(self) -> secretmanager.SecretManagerServiceClient:
        """Lazy-initialize client."""
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def login(self) -> None:
        """
        Prepare credentials and the API client.

        Raises:
            LoginError: If the service account file is missing or the client can't be created
        """
        if self.service_account_path:
            if not os.path.isfile(self.service_account_path):
                raise LoginError(f"Service account file not found at: {self.service_account_path}")
            os.environ['GOOGLE_APPLICATION_CREDENTIALS'] = self.service_account_path
            logger.info(f"Set GOOGLE_APPLICATION_CREDENTIALS from config: {self.service_account_path}")
        if not self.project_id:
            raise LoginError("Project ID not found. Set GCP_PROJECT or 'project_id' in the store config")
        try:
            self.client
        except Exception as e:
            # google.auth's DefaultCredentialsError is not a GoogleAPIError
            raise LoginError(f"Couldn't create Secret Manager client: {e}")

    def get_token(self) -> Optional[str]:
        return None

    def _resource_name(self, url: str) -> str:
        if url.startswith("projects/"):
            return url if "/versions/" in url else f"{url}/versions/latest"
        return f"projects/{self.project_id}/secrets/{url}/versions/latest"

    def request(self, method: str, url: str, data: Optional[Dict[str, Any]] = None) -> SecretResult:
        if method.upper() != "GET":
            raise StoreRequestError(f"Unsupported method for GCP Secret Manager: {method}", status_code=405)

        name = self._resource_name(url)
        try:
            response = self.client.access_secret_version(request={"name": name})
        except gcp_exceptions.GoogleAPICallError as e:
            raise StoreRequestError(f"GCP fetch failed for {name}: {e}", status_code=e.code)
        except gcp_exceptions.GoogleAPIError as e:
            # Retry errors and transport failures carry no response
            raise StoreRequestError(f"GCP fetch failed for {name}: {e}")

        payload = response.payload.data.decode("UTF-8")
        try:
            fields = json.loads(payload)
        except ValueError:
            fields = None
        if not isinstance(fields, dict):
            fields = {"value": payload}

        return SecretResult(data=fields, lease_duration=self.refresh_interval, renewable=False)
