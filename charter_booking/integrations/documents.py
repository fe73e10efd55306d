"""
Document generator client - renders quote confirmations, tickets,
receipts and rejection notices as hosted PDFs.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import DOCUMENT_SERVICE_TOKEN, DOCUMENT_SERVICE_URL, DOCUMENTS_ENABLED
from ..errors import ExternalServiceError

logger = logging.getLogger(__name__)


def raise_for_service_status(service: str, response: httpx.Response) -> None:
    """Map an upstream HTTP failure to ExternalServiceError.

    429 and 5xx are retryable; any other 4xx is permanent.
    """
    if response.status_code < 400:
        return
    retryable = response.status_code == 429 or response.status_code >= 500
    raise ExternalServiceError(
        f"{service} returned {response.status_code}: {response.text[:200]}",
        service=service,
        retryable=retryable,
        status_code=response.status_code,
    )


class DocumentGeneratorClient:
    """Thin HTTP client for the external document generator."""

    service = "document_generator"

    def __init__(
        self,
        base_url: str = DOCUMENT_SERVICE_URL,
        token: Optional[str] = DOCUMENT_SERVICE_TOKEN,
        enabled: bool = DOCUMENTS_ENABLED,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.enabled = enabled
        self.timeout = timeout
        self.transport = transport

        if self.enabled and not self.token:
            logger.warning("⚠️ Documents enabled but DOCUMENT_SERVICE_TOKEN not configured")

    async def render(self, document_kind: str, payload: Dict[str, Any], idempotency_key: str) -> str:
        """Render one document and return its URL."""
        reference = payload.get("referenceNumber")

        if not self.enabled:
            logger.info(f"📄 Documents disabled - would render {document_kind} for {reference}")
            return f"disabled://documents/{document_kind}/{reference}"

        headers = {"Content-Type": "application/json", "Idempotency-Key": idempotency_key}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/documents",
                    headers=headers,
                    json={"documentKind": document_kind, "data": payload},
                )
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                f"Document generator unreachable: {e}", service=self.service
            ) from e

        raise_for_service_status(self.service, response)

        url = response.json().get("url")
        if not url:
            raise ExternalServiceError(
                "Document generator response has no url", service=self.service
            )

        logger.info(f"📄 Rendered {document_kind} for {reference}: {url}")
        return url
