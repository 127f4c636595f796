"""IncidentRuntime — wires the pipeline components together.

Owns the database engine and constructs the store, queue, notifier, tool
executor, planner, responder, intake and queue worker from one Settings
instance. Nothing here is a process-wide singleton: every API app, worker
process or test builds its own runtime.
"""

from __future__ import annotations

import random
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel
from sqlalchemy.ext.asyncio import AsyncEngine

from incident_agent.agents.planner import build_planner
from incident_agent.agents.responder import IncidentResponder
from incident_agent.agents.tools import ToolExecutor
from incident_agent.core.config import Settings
from incident_agent.core.intake import IncidentIntake
from incident_agent.core.logging import get_logger
from incident_agent.core.notifier import Notifier
from incident_agent.core.queue import JobQueue, QueueWorker
from incident_agent.db.engine import create_engine_from_url, create_session_factory, init_models
from incident_agent.db.store import IncidentStore

logger = get_logger("runtime")


class IncidentRuntime:
    def __init__(
        self,
        settings: Settings,
        *,
        engine: Optional[AsyncEngine] = None,
        chat_model: Optional[BaseChatModel] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings
        self._owns_engine = engine is None
        self.engine = engine or create_engine_from_url(settings.database_url)
        self.session_factory = create_session_factory(self.engine)

        self.store = IncidentStore(self.session_factory)
        self.queue = JobQueue.from_settings(self.session_factory, settings)
        self.notifier = Notifier(buffer_size=settings.subscriber_buffer_size)
        self.tools = ToolExecutor(rng, log_sample_size=settings.log_sample_size)
        self.planner = build_planner(settings, self.tools, chat_model)
        self.responder = IncidentResponder(
            self.store,
            self.notifier,
            self.tools,
            self.planner,
            step_delay=settings.diagnostic_step_delay_seconds,
            action_delay=settings.action_step_delay_seconds,
        )
        self.intake = IncidentIntake(self.store, self.queue, self.notifier)
        self.worker = QueueWorker(
            self.queue,
            self.responder.handle_job,
            concurrency=settings.queue_concurrency,
            poll_interval=settings.queue_poll_interval_seconds,
            heartbeat_interval=settings.queue_heartbeat_interval_seconds,
        )

    async def start(self, *, with_worker: bool = True) -> None:
        await init_models(self.engine)
        await self.intake.reschedule_unqueued()
        logger.info(
            "runtime_started",
            database=self.engine.url.render_as_string(hide_password=True),
            reasoning_service=self.planner.has_reasoning_service,
            worker=with_worker,
        )
        if with_worker:
            self.worker.start()

    async def stop(self, *, timeout: Optional[float] = None) -> None:
        await self.worker.stop(timeout=timeout)
        if self._owns_engine:
            await self.engine.dispose()
        logger.info("runtime_stopped")
