# backend/compass/interfaces/http/deps/services.py
"""
Shared collaborators for the HTTP surface: one store, one repository, one
session store, and a registry of live runners keyed by session id.

Runners created here use API_REVEAL_DELAY_S for both reveal and auto-advance,
so a request returns once the node chain has settled.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import HTTPException

from compass.adapters.storage import RetryingStore, build_store
from compass.core.config import Settings, get_settings
from compass.domain.flows.repository import FlowRepository
from compass.domain.flows.runner import FlowRunner
from compass.domain.flows.state import RunnerState
from compass.domain.flows.validator import FlowValidator
from compass.domain.sessions.store import SessionStateStore

logger = logging.getLogger(__name__)


class Services:
    def __init__(self, settings: Optional[Settings] = None, store: Optional[RetryingStore] = None):
        self.settings = settings or get_settings()
        self.store = store or build_store(self.settings)
        self.validator = FlowValidator()
        self.repository = FlowRepository(self.store, validator=self.validator, flow_dirs=self.settings.FLOW_DIRS)
        self.sessions = SessionStateStore(self.store, idle_timeout_s=self.settings.SESSION_IDLE_TIMEOUT_S)
        self.runners: Dict[str, FlowRunner] = {}

    def new_runner(self) -> FlowRunner:
        delay = self.settings.API_REVEAL_DELAY_S
        return FlowRunner(
            repository=self.repository,
            sessions=self.sessions,
            validator=self.validator,
            reveal_delay=delay,
            auto_advance_pause=delay,
            clear_completed=self.settings.CLEAR_COMPLETED_SESSIONS,
        )

    def register(self, runner: FlowRunner) -> None:
        if runner.session is not None:
            self.runners[runner.session.id] = runner

    def runner_for(self, session_id: str) -> FlowRunner:
        runner = self.runners.get(session_id)
        if runner is None:
            raise HTTPException(status_code=404, detail=f"No live session {session_id}")
        return runner

    def drop(self, session_id: str) -> Optional[FlowRunner]:
        return self.runners.pop(session_id, None)

    async def release_if_completed(self, runner: FlowRunner) -> bool:
        """Forget a runner whose flow has ended; its transcript goes with it."""
        if runner.state is not RunnerState.COMPLETED:
            return False
        for session_id, live in list(self.runners.items()):
            if live is runner:
                del self.runners[session_id]
        await runner.close()
        logger.info("Released completed runner (%d live)", len(self.runners))
        return True


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = Services()
    return _services


def reset_services(services: Optional[Services] = None) -> Services:
    """Swap the process-wide container (tests, reconfiguration)."""
    global _services
    _services = services or Services()
    return _services
