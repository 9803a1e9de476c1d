from timetrack.db_models.user import User
from timetrack.db_models.project import Project
from timetrack.db_models.task import Task
from timetrack.db_models.time_entry import TimeEntry

__all__ = [
    "User",
    "Project",
    "Task",
    "TimeEntry",
]
