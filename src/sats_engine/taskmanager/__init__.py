"""Task manager — background job scheduling.

Provides ``TaskManager`` for the engine's periodic work:
- Stale pending-spend sweep (resolved through the chain, also run at startup)
- Fee-rate quote refresh
"""

from __future__ import annotations

from sats_engine.taskmanager.manager import CronJob, JobStatus, TaskManager

__all__ = ["CronJob", "JobStatus", "TaskManager"]
