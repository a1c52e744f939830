"""
Salesforce REST client for server-side calls.

The relay itself downloads files with the caller's bearer token. This client
uses the service's own OAuth credentials (refresh-token grant) for the
optional follow-up of flagging a case as "files received".
"""

import logging
from typing import Optional

import httpx

from app.errors import RemoteUnavailable, ValidationError
from app.services.retry import with_retries

logger = logging.getLogger(__name__)


def _soql_literal(value: str) -> str:
    """Quote a value for a SOQL string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class SalesforceClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        instance_url: str,
        token_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_token: Optional[str],
        api_version: str = "v64.0",
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
    ):
        self._client = client
        self.instance_url = instance_url.rstrip("/")
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.api_version = api_version
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._access_token: Optional[str] = None

    @property
    def _api_base(self) -> str:
        return f"{self.instance_url}/services/data/{self.api_version}"

    async def _retry(self, operation, label: str):
        return await with_retries(
            operation,
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            label=label,
        )

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def refresh_access_token(self) -> str:
        """Exchange the refresh token for an access token and cache it."""
        if not (self.client_id and self.client_secret and self.refresh_token):
            raise ValidationError(
                "SF_CLIENT_ID, SF_CLIENT_SECRET and SF_REFRESH_TOKEN must be set"
            )

        async def _exchange() -> str:
            response = await self._client.post(
                self.token_url,
                data={
                    "grant_type": "refresh_token",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                },
            )
            if not response.is_success:
                raise RemoteUnavailable(
                    f"Token endpoint responded with {response.status_code}",
                    status=response.status_code,
                )
            token = response.json().get("access_token")
            if not token:
                raise RemoteUnavailable("Token endpoint returned no access_token")
            return token

        self._access_token = await self._retry(_exchange, label="Salesforce token refresh")
        return self._access_token

    async def get_access_token(self) -> str:
        if self._access_token:
            return self._access_token
        return await self.refresh_access_token()

    def invalidate(self) -> None:
        self._access_token = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Authenticated request; refreshes the token once on 401."""
        token = await self.get_access_token()
        response = await self._client.request(
            method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs
        )
        if response.status_code == 401:
            logger.info("Salesforce token rejected; refreshing")
            self.invalidate()
            token = await self.refresh_access_token()
            response = await self._client.request(
                method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs
            )
        if not response.is_success:
            raise RemoteUnavailable(
                f"Salesforce responded with {response.status_code}",
                status=response.status_code,
            )
        return response

    # ------------------------------------------------------------------
    # Case records
    # ------------------------------------------------------------------

    async def find_case_id(self, case_number: str) -> Optional[str]:
        """Record Id of the case with ``CaseNumber = case_number``, or None."""
        soql = f"SELECT Id FROM Case WHERE CaseNumber = {_soql_literal(case_number)} LIMIT 1"

        response = await self._retry(
            lambda: self._request("GET", f"{self._api_base}/query", params={"q": soql}),
            label=f"Find case {case_number}",
        )
        records = response.json().get("records") or []
        if not records:
            return None
        return records[0].get("Id")

    async def mark_files_received(self, case_number: str, field_name: str) -> bool:
        """
        Set ``field_name`` to true on the case. Returns False when no case has
        that number.
        """
        case_id = await self.find_case_id(case_number)
        if not case_id:
            logger.warning(f"Case {case_number} not found in Salesforce; not marked")
            return False

        await self._retry(
            lambda: self._request(
                "PATCH",
                f"{self._api_base}/sobjects/Case/{case_id}",
                json={field_name: True},
            ),
            label=f"Mark case {case_number} received",
        )
        logger.info(f"Case {case_number} ({case_id}) marked as files received")
        return True
