# timeblock/errors.py
from dataclasses import dataclass
from typing import Optional


class PlanningError(Exception):
    pass


class InputInvalid(PlanningError, ValueError):
    """A single task or block is malformed (duration <= 0, end <= start)."""


class ConstraintUnsatisfiable(PlanningError):
    pass


class CollaboratorUnavailable(PlanningError):
    """Calendar or store could not be reached (e.g. access denied)."""


@dataclass
class PlanWarning:
    code: str                 # exception class name, e.g. "InputInvalid"
    message: str
    subject_id: Optional[str] = None

    @classmethod
    def from_error(cls, err: PlanningError, subject_id: Optional[str] = None) -> "PlanWarning":
        return cls(code=type(err).__name__, message=str(err), subject_id=subject_id)
