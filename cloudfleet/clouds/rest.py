"""Shared plumbing for token-authenticated JSON REST providers."""

from __future__ import annotations

import logging
from typing import Any

import requests

from .base import (
    BaseCloud,
    CloudAuthError,
    CloudError,
    CloudNotFoundError,
    CloudQuotaError,
    CloudValidationError,
)

log = logging.getLogger(__name__)


class RestCloud(BaseCloud):
    """Base for providers reached over a Bearer-token REST API.

    Subclasses set ``API_BASE_URL`` and ``VENDOR_LABEL`` and may override
    ``_error_message`` to reword vendor errors.
    """

    API_BASE_URL: str = ""
    VENDOR_LABEL: str = "Cloud"

    def __init__(self, credential: str, config: Any = None, clock: Any = None,
                 session: requests.Session | None = None) -> None:
        super().__init__(credential, config=config, clock=clock)
        self.api_key = credential.strip()
        self.request_timeout: int = self.config.HTTP_TIMEOUT
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Get or create a requests session with authentication headers."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            })
        return self._session

    def numeric_id(self, instance_id: str) -> int:
        """Parse a vendor instance ID that must be an integer.

        Raises:
            CloudValidationError: If the ID is not numeric
        """
        try:
            return int(str(instance_id).strip())
        except ValueError:
            raise self.error(
                f"Invalid {self.VENDOR_LABEL} instance ID: {instance_id!r}", cls=CloudValidationError
            ) from None

    def _error_message(self, status_code: int, body: str) -> str:
        return f"{self.VENDOR_LABEL} API error ({status_code}): {body}"

    def _send(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> dict[str, Any]:
        """Make one authenticated request and decode the response.

        Args:
            method: HTTP method (GET, POST, DELETE, PUT)
            endpoint: API endpoint (e.g. '/droplets')
            params: Query parameters
            json_data: JSON body data

        Returns:
            Response JSON as dictionary ({} for empty bodies)

        Raises:
            CloudAuthError: On authentication failures (401, 403)
            CloudNotFoundError: When resource not found (404)
            CloudQuotaError: On quota exceeded (402, 429)
            CloudValidationError: On other 4xx responses
            CloudError: On 5xx, transport failures and undecodable bodies
        """
        url = endpoint if endpoint.startswith("http") else f"{self.API_BASE_URL}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.request_timeout,
            )
        except requests.exceptions.Timeout as e:
            raise self.error(
                f"Request to {self.VENDOR_LABEL} API timed out: {e}", status_code=0
            ) from e
        except requests.exceptions.RequestException as e:
            raise self.error(
                f"Failed to connect to {self.VENDOR_LABEL} API: {e}", status_code=0
            ) from e

        status = response.status_code
        if status == 204:
            return {}

        if status >= 400:
            message = self._error_message(status, response.text)
            if status in (401, 403):
                raise self.error(message, status, CloudAuthError)
            if status == 404:
                raise self.error(message, status, CloudNotFoundError)
            if status in (402, 429):
                raise self.error(message, status, CloudQuotaError)
            if status < 500:
                raise self.error(message, status, CloudValidationError)
            raise self.error(message, status, CloudError)

        if not response.text or not response.text.strip():
            return {}

        try:
            return response.json()
        except ValueError:
            log.warning(f"{self.VENDOR_LABEL} returned a non-JSON body for {method} {endpoint}")
            raise self.error(f"{self.VENDOR_LABEL} API returned a malformed response", 500)
