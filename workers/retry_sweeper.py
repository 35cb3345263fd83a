"""
Webhook retry sweeper.

Runs WebhookService.process_due_deliveries on a fixed interval as an asyncio
task, either inside the API process (started from the FastAPI lifespan) or
standalone via start_worker.py. Several sweepers may run at once; the claim
token on each delivery row keeps them from processing the same row.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from services.webhook_service import WebhookService
from shared.logging import get_logger

log = get_logger(__name__)


class RetrySweeper:
    def __init__(
        self,
        webhooks: WebhookService,
        *,
        interval_seconds: float = 5.0,
        batch_size: int = 100,
    ) -> None:
        self._webhooks = webhooks
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        return await self._webhooks.process_due_deliveries(self._batch_size)

    async def run(self) -> None:
        log.info(
            "webhook_sweeper_started",
            interval_seconds=self._interval,
            batch_size=self._batch_size,
        )
        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except Exception:
                log.exception("webhook_sweep_failed")
                processed = 0

            # A full batch means there is a backlog: go again straight away
            if processed >= self._batch_size:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        log.info("webhook_sweeper_stopped")

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stopping.clear()
        self._task = asyncio.create_task(self.run(), name="webhook-retry-sweeper")
        return self._task

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
