"""Scheduling module for periodic feed refreshes.

This module provides the scheduling infrastructure that runs the refresh
scheduling pass on an interval using APScheduler with async support.
"""

from .apscheduler_core import APSchedulerCore, ScheduledTask
from .scheduler import RefreshScheduler

__all__ = ["APSchedulerCore", "RefreshScheduler", "ScheduledTask"]
