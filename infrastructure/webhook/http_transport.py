"""httpx implementation of WebhookTransport.

Exceptions are left to propagate: the dispatcher is the one place that turns
timeouts and connection errors into delivery-row state.
"""

from infrastructure.http_client import HttpClient
from infrastructure.webhook.protocol import TransportResponse
from shared.logging import get_logger

log = get_logger(__name__)


class HttpWebhookTransport:
    def __init__(self, http_client: HttpClient) -> None:
        self._http = http_client

    async def send(
        self,
        method: str,
        url: str,
        body: bytes,
        headers: dict[str, str],
        timeout_seconds: float,
    ) -> TransportResponse:
        response = await self._http.request(
            method, url, content=body, headers=headers, timeout=timeout_seconds
        )
        if response.status_code >= 400:
            log.debug(
                "webhook_endpoint_rejected",
                url=url,
                status_code=response.status_code,
            )
        return TransportResponse(status_code=response.status_code, body=response.text)
