"""Sync orchestration: channel selection, per-rental sync, back-off and scheduling."""

from smsrental.orchestrator.backoff import SyncBackoffRegistry
from smsrental.orchestrator.channels import FetchChannel, select_channel
from smsrental.orchestrator.scheduler import (
    SyncPassStats,
    next_sync_interval,
    run_continuous,
    run_sync_pass,
)
from smsrental.orchestrator.sync import SyncOrchestrator, SyncResult, SyncTrigger

__all__ = [
    "FetchChannel",
    "select_channel",
    "SyncBackoffRegistry",
    "SyncOrchestrator",
    "SyncResult",
    "SyncTrigger",
    "SyncPassStats",
    "next_sync_interval",
    "run_sync_pass",
    "run_continuous",
]
