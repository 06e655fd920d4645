"""
Google Play Client
==================

Async client for the Android Publisher v3 subscription endpoints:

- ``purchases.subscriptions.get``: validates a purchase token
- ``purchases.subscriptions.acknowledge``: confirms a purchase; Google
  refunds purchases that stay unacknowledged for three days

Requests are authorized with a service-account access token obtained
through google-auth. Token refresh is a blocking call, so it runs in
a worker thread.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from iap.core.errors import AcknowledgementError, ReceiptValidationError

logger = logging.getLogger(__name__)

API_BASE = "https://androidpublisher.googleapis.com/androidpublisher/v3"
SCOPES = ["https://www.googleapis.com/auth/androidpublisher"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


class GooglePlayClient:
    """Client for Google Play subscription validation and acknowledgement."""

    def __init__(
        self,
        client_email: str,
        private_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        credentials: Optional[Any] = None,
    ):
        self.client_email = client_email
        self.private_key = private_key
        self.timeout = timeout
        self._transport = transport
        self._credentials = credentials
        self._token_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    def _build_credentials(self) -> service_account.Credentials:
        if not (self.client_email and self.private_key):
            raise ReceiptValidationError("Google service account not configured")
        return service_account.Credentials.from_service_account_info(
            {
                "client_email": self.client_email,
                "private_key": self.private_key,
                "token_uri": TOKEN_URI,
            },
            scopes=SCOPES,
        )

    async def _access_token(self) -> str:
        """Return a valid access token, refreshing it when expired."""
        async with self._token_lock:
            if self._credentials is None:
                self._credentials = self._build_credentials()

            if not self._credentials.valid:
                try:
                    await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
                except Exception as exc:
                    raise ReceiptValidationError(
                        f"Failed to obtain Google access token: {exc}"
                    ) from exc

            return self._credentials.token

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    @staticmethod
    def _subscription_path(package_name: str, subscription_id: str, token: str) -> str:
        return (
            f"{API_BASE}/applications/{package_name}"
            f"/purchases/subscriptions/{subscription_id}/tokens/{token}"
        )

    # -------------------------------------------------------------------------
    # Android Publisher API
    # -------------------------------------------------------------------------

    async def get_subscription(
        self,
        package_name: str,
        subscription_id: str,
        token: str,
    ) -> dict[str, Any]:
        """
        Fetch the SubscriptionPurchase resource for a purchase token.

        Raises:
            ReceiptValidationError: Network failure, unknown token or any
                non-200 answer.
        """
        access_token = await self._access_token()
        url = self._subscription_path(package_name, subscription_id, token)

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.get(url, headers=self._headers(access_token))
            except httpx.TimeoutException as exc:
                raise ReceiptValidationError("Google Play API timed out") from exc
            except httpx.HTTPError as exc:
                raise ReceiptValidationError(f"Google Play API unreachable: {exc}") from exc

        if response.status_code != 200:
            logger.error(
                "Google Play API returned status %d for %s: %s",
                response.status_code,
                subscription_id,
                response.text[:200],
            )
            raise ReceiptValidationError(
                f"Google Play API returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ReceiptValidationError("Google Play API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ReceiptValidationError("Google Play API returned unexpected payload")
        return body

    async def acknowledge_subscription(
        self,
        package_name: str,
        subscription_id: str,
        token: str,
    ) -> None:
        """
        Acknowledge a subscription purchase.

        Google treats repeated acknowledgement of the same token as a no-op.

        Raises:
            AcknowledgementError: Any failure, including credential errors.
        """
        try:
            access_token = await self._access_token()
        except ReceiptValidationError as exc:
            raise AcknowledgementError(str(exc)) from exc

        url = self._subscription_path(package_name, subscription_id, token) + ":acknowledge"

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.post(
                    url, headers=self._headers(access_token), json={}
                )
            except httpx.HTTPError as exc:
                raise AcknowledgementError(f"Google acknowledge call failed: {exc}") from exc

        if response.status_code not in (200, 204):
            raise AcknowledgementError(
                f"Google acknowledge returned HTTP {response.status_code}: {response.text[:200]}"
            )

        logger.info("Acknowledged Google Play subscription %s for %s", subscription_id, package_name)
