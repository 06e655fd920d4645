"""
App Store Client
================

Thin async client for Apple's ``verifyReceipt`` endpoint.

Receipts are always sent to production first; Apple answers status
21007 for sandbox receipts, in which case the call is repeated against
the sandbox host (Apple's documented validation flow). In test mode
only the sandbox host is used.
"""

import logging
from typing import Any, Optional

import httpx

from iap.core.errors import ReceiptValidationError

logger = logging.getLogger(__name__)

PRODUCTION_URL = "https://buy.itunes.apple.com/verifyReceipt"
SANDBOX_URL = "https://sandbox.itunes.apple.com/verifyReceipt"

STATUS_OK = 0
STATUS_SANDBOX_RECEIPT = 21007


class AppStoreClient:
    """Client for Apple receipt verification."""

    def __init__(
        self,
        shared_secret: str,
        exclude_old_transactions: bool = True,
        test_mode: bool = False,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shared_secret = shared_secret
        self.exclude_old_transactions = exclude_old_transactions
        self.test_mode = test_mode
        self.timeout = timeout
        self._transport = transport

    async def verify_receipt(self, receipt: str) -> tuple[dict[str, Any], bool]:
        """
        Verify a base64 receipt.

        Returns:
            Tuple of (Apple response body, whether the sandbox answered).

        Raises:
            ReceiptValidationError: Network failure or non-zero status.
        """
        if not receipt or not isinstance(receipt, str):
            raise ReceiptValidationError("Apple receipt must be a non-empty string")

        payload = {
            "receipt-data": receipt,
            "password": self.shared_secret,
            "exclude-old-transactions": self.exclude_old_transactions,
        }

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            if self.test_mode:
                body = await self._post(client, SANDBOX_URL, payload)
                sandbox = True
            else:
                body = await self._post(client, PRODUCTION_URL, payload)
                sandbox = False
                if body.get("status") == STATUS_SANDBOX_RECEIPT:
                    logger.info("Sandbox receipt sent to production, retrying against sandbox")
                    body = await self._post(client, SANDBOX_URL, payload)
                    sandbox = True

        status = body.get("status")
        if status != STATUS_OK:
            raise ReceiptValidationError(f"Apple rejected receipt with status {status}")

        return body, sandbox

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            response = await client.post(url, json=payload)
        except httpx.TimeoutException as exc:
            raise ReceiptValidationError("Apple verifyReceipt timed out") from exc
        except httpx.HTTPError as exc:
            raise ReceiptValidationError(f"Apple verifyReceipt unreachable: {exc}") from exc

        if response.status_code != 200:
            logger.error(
                "Apple verifyReceipt returned status %d: %s",
                response.status_code,
                response.text[:200],
            )
            raise ReceiptValidationError(
                f"Apple verifyReceipt returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ReceiptValidationError("Apple verifyReceipt returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ReceiptValidationError("Apple verifyReceipt returned unexpected payload")
        return body
