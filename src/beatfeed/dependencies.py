"""Dependency injection providers for FastAPI.

Shared resources are created during the app lifespan and stored in
``app.state``; these providers hand them to route handlers and are the seam
tests override through ``app.dependency_overrides``.
"""

import logging
from typing import Annotated

from fastapi import Depends, Request

from .config import Settings, get_settings
from .scheduler import HistoryLedger, SchedulerHolder

logger = logging.getLogger(__name__)


# Settings Dependency
def get_settings_dependency() -> Settings:
    """
    Get application settings.

    Returns the global settings instance configured from environment variables.

    Returns:
        Settings instance
    """
    return get_settings()


# Scheduler Holder Dependency
def get_scheduler_holder(request: Request) -> SchedulerHolder:
    """
    Get the scheduler holder from app state.

    The holder is created during app lifespan. It does not load the scheduler
    state; routes call ``await holder.get()`` so that load failures can be
    handled per endpoint.

    Args:
        request: FastAPI request containing app state

    Returns:
        SchedulerHolder instance

    Raises:
        RuntimeError: If the holder was not initialized
    """
    if not hasattr(request.app.state, "scheduler_holder"):
        raise RuntimeError("Scheduler holder not initialized. Check app lifespan configuration.")
    return request.app.state.scheduler_holder


# History Ledger Dependency
def get_history_ledger(request: Request) -> HistoryLedger:
    """
    Get the history ledger from app state.

    Args:
        request: FastAPI request containing app state

    Returns:
        HistoryLedger instance

    Raises:
        RuntimeError: If the ledger was not initialized
    """
    if not hasattr(request.app.state, "history_ledger"):
        raise RuntimeError("History ledger not initialized. Check app lifespan configuration.")
    return request.app.state.history_ledger


# Type aliases for cleaner route signatures
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]
SchedulerHolderDep = Annotated[SchedulerHolder, Depends(get_scheduler_holder)]
HistoryLedgerDep = Annotated[HistoryLedger, Depends(get_history_ledger)]
