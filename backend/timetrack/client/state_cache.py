import os
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from timetrack.models.project import ProjectResponse
from timetrack.models.time_entry import TimeEntryResponse
from timetrack.utils.logger import logger


class CachedState(BaseModel):
    """Last known state, shown on cold start until the first pull lands."""

    currentEntry: Optional[TimeEntryResponse] = None
    projects: List[ProjectResponse] = Field(default_factory=list)
    recentEntries: List[TimeEntryResponse] = Field(default_factory=list)
    earnings: Decimal = Decimal("0.00")
    savedAt: Optional[datetime] = None


class StateCache:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def load(self) -> CachedState:
        if not self.path.exists():
            return CachedState()
        try:
            return CachedState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as e:
            logger.warning("Discarding unreadable state cache %s: %s", self.path, e)
            return CachedState()

    def save(self, state: CachedState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(state.model_dump_json(), encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
