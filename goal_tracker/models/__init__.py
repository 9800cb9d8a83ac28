"""ORM models package.

Import all models here so that SQLAlchemy's metadata is fully populated
when Alembic runs autogenerate. The order of imports matters for foreign
key resolution.
"""

from goal_tracker.models.user import User
from goal_tracker.models.goal import DEFAULT_TARGET, Goal, GoalCategory
from goal_tracker.models.milestone import Milestone
from goal_tracker.models.action import DEFAULT_IMPACT, Action, ActionColumnsMixin, MilestoneAction
from goal_tracker.models.tools_snapshot import ToolsSnapshot

__all__ = [
    "DEFAULT_IMPACT",
    "DEFAULT_TARGET",
    "Action",
    "ActionColumnsMixin",
    "Goal",
    "GoalCategory",
    "Milestone",
    "MilestoneAction",
    "ToolsSnapshot",
    "User",
]
