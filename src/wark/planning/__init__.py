"""Work planning on top of tickets: milestones and per-ticket task checklists."""

from __future__ import annotations

from wark.planning.milestones import MilestonePlanner, MilestoneProgress
from wark.planning.tasks import TaskChecklist, TaskCompletion, TaskProgress

__all__ = [
    "MilestonePlanner",
    "MilestoneProgress",
    "TaskChecklist",
    "TaskCompletion",
    "TaskProgress",
]
