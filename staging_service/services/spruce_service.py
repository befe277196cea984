"""
Spruce Health messaging client

Delivers staged messages to patients. Each call is a single attempt: a
failed send is reported back to the queue and never retried here.
"""

from typing import Optional
import httpx
import structlog

from staging_service.config import settings
from staging_service.models import SendResult

logger = structlog.get_logger()

NOT_CONFIGURED = "Spruce API integration not configured"


def build_auth_header(token: str) -> str:
    """Spruce app tokens (aid_... or base64 'aid') use Basic auth, others Bearer"""
    if token.startswith("YWlk") or token.startswith("aid_"):
        return f"Basic {token}"
    return f"Bearer {token}"


class SpruceClient:
    """
    Usage:
        client = SpruceClient()
        result = await client.send_message("p1", "Take ibuprofen 400mg")
        await client.close()
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.spruce_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.spruce_base_url).rstrip("/")
        self.timeout = timeout or settings.spruce_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                headers={
                    "Authorization": build_auth_header(self.api_key),
                    "Content-Type": "application/json",
                    "User-Agent": "SpruceHealthClient/1.0",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def send_message(self, patient_id: str, content: str) -> SendResult:
        """Send a text message to a patient"""
        if not self.is_configured:
            return SendResult(success=False, error=NOT_CONFIGURED)

        client = await self._get_client()
        try:
            response = await client.post(
                "/messages",
                json={"text": content, "patient_id": patient_id},
            )
        except httpx.TimeoutException:
            logger.error("Spruce send timed out", patient_id=patient_id)
            return SendResult(success=False, error="Spruce request timed out")
        except httpx.HTTPError as e:
            logger.error("Spruce send failed", patient_id=patient_id, error=str(e))
            return SendResult(success=False, error=f"network error: {e}")

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.error("Spruce rejected message",
                         patient_id=patient_id,
                         status_code=response.status_code,
                         detail=detail)
            return SendResult(success=False, error=f"Spruce API error {response.status_code}: {detail}")

        try:
            data = response.json()
        except ValueError:
            data = None
        message_id = data.get("id") if isinstance(data, dict) else None

        logger.info("Message sent via Spruce", patient_id=patient_id, spruce_message_id=message_id)
        return SendResult(success=True, message_id=message_id)


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)
