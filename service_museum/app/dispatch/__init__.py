"""Admission control for upstream calls."""

from .scheduler import DispatchScheduler, DispatchTask, SchedulerWindow

__all__ = ["DispatchScheduler", "DispatchTask", "SchedulerWindow"]
