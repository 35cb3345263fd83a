"""WebhookTransport protocol — the dispatcher depends on this, not on httpx directly."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class WebhookTransport(Protocol):
    async def send(
        self,
        method: str,
        url: str,
        body: bytes,
        headers: dict[str, str],
        timeout_seconds: float,
    ) -> TransportResponse:
        """Send one request. Raises httpx.TimeoutException / httpx.HTTPError on failure."""
        ...
