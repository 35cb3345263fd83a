"""Tests for the background retry sweeper."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from infrastructure.webhook.protocol import TransportResponse
from schemas.dto.requests.webhook import CreateWebhookRequest
from workers.retry_sweeper import RetrySweeper


class TestRetrySweeper:
    async def test_run_once_processes_due_deliveries(
        self, webhook_service, owner, transport, clock
    ):
        transport.send.return_value = TransportResponse(status_code=500, body="")
        webhook = await webhook_service.create(
            owner,
            CreateWebhookRequest(
                name="Orders hook", url="https://hooks.example.com/in", events=["url.created"]
            ),
        )
        await webhook_service.enqueue_delivery(webhook.webhook_id, "url.created", {"n": 1})
        clock.advance(seconds=1)

        sweeper = RetrySweeper(webhook_service, interval_seconds=0.01, batch_size=10)
        assert await sweeper.run_once() == 1
        assert transport.send.call_count == 2

    async def test_start_and_stop(self):
        webhooks = MagicMock()
        webhooks.process_due_deliveries = AsyncMock(return_value=0)
        sweeper = RetrySweeper(webhooks, interval_seconds=0.01, batch_size=10)

        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert not sweeper.running
        assert webhooks.process_due_deliveries.await_count >= 1
        webhooks.process_due_deliveries.assert_awaited_with(10)

    async def test_start_twice_returns_same_task(self):
        webhooks = MagicMock()
        webhooks.process_due_deliveries = AsyncMock(return_value=0)
        sweeper = RetrySweeper(webhooks, interval_seconds=0.01)

        first = sweeper.start()
        assert sweeper.start() is first
        await sweeper.stop()

    async def test_failing_sweep_keeps_running(self):
        webhooks = MagicMock()
        webhooks.process_due_deliveries = AsyncMock(side_effect=RuntimeError("mongo down"))
        sweeper = RetrySweeper(webhooks, interval_seconds=0.01)

        sweeper.start()
        await asyncio.sleep(0.05)
        assert sweeper.running
        await sweeper.stop()
        assert webhooks.process_due_deliveries.await_count >= 2
