#!/usr/bin/env python3
"""
RecoverPoint data model and error types

Records returned by the API gateway are plain frozen dataclasses so the
orchestration code can compare and log them without touching JSON.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


ACTIVE_ROLE = "ACTIVE"
LOGGED_ACCESS = "LOGGED_ACCESS"


class DirectAccessError(Exception):
    """Base class for every error raised by rpda"""


class ConfigurationError(DirectAccessError):
    """Malformed or placeholder configuration, fatal before any group runs"""


class GatewayError(DirectAccessError):
    """Appliance unreachable or returned an unexpected response to a read"""


class GroupNotFoundError(DirectAccessError):
    def __init__(self, group_name: str):
        self.group_name = group_name
        super().__init__(f"Consistency group '{group_name}' not found")


class AuthorizationError(DirectAccessError):
    def __init__(self, group_name: str, username: str):
        self.group_name = group_name
        self.username = username
        super().__init__(
            f"User '{username}' does not have sufficient access to administer {group_name}"
        )


class ResolutionError(DirectAccessError):
    """
    No eligible copy matched the requested intent.

    Carries every non-production copy name so the operator can fix the
    configuration or the spelling of --copy.
    """

    def __init__(self, requested: str, available: List[str]):
        self.requested = requested
        self.available = list(available)
        listing = ", ".join(self.available) if self.available else "none"
        super().__init__(
            f"Unable to determine the desired copy for {requested}. "
            f"Available copies: {listing}"
        )


class TransitionError(DirectAccessError):
    """A mutating call was rejected (after retries where they apply)"""

    def __init__(self, action: str, task: "Task", body: str = ""):
        self.action = action
        self.task = task
        self.body = body
        message = f"{task.group_name} - Error {action} for copy {task.copy_name}"
        if body:
            message += f": {body}"
        super().__init__(message)


class Direction(Enum):
    ENABLE = "enable"
    DISABLE = "disable"


class OutcomeStatus(Enum):
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Copy:
    name: str
    group_id: int
    cluster_id: int
    copy_id: int
    role: str = ""
    image_access_enabled: bool = False
    image_mode: str = ""

    @property
    def is_active(self) -> bool:
        return self.role == ACTIVE_ROLE

    def same_copy(self, other: "Copy") -> bool:
        """True when both records address the same physical copy"""
        return (
            self.group_id == other.group_id
            and self.cluster_id == other.cluster_id
            and self.copy_id == other.copy_id
        )


@dataclass(frozen=True)
class ReplicationGroup:
    id: int
    name: str
    copies: List[Copy] = field(default_factory=list)


@dataclass(frozen=True)
class SelectionIntent:
    """
    Which copy the operator wants: an exact name, or a role token.

    Exactly one of copy_name / role must be set.
    """

    copy_name: Optional[str] = None
    role: Optional[str] = None

    TEST = "test"
    DR = "dr"

    def __post_init__(self):
        if bool(self.copy_name) == bool(self.role):
            raise ValueError("Exactly one of copy name or role must be provided")
        if self.role and self.role not in (self.TEST, self.DR):
            raise ValueError(f"Unknown copy role '{self.role}' (expected test or dr)")

    @classmethod
    def by_name(cls, name: str) -> "SelectionIntent":
        return cls(copy_name=name)

    @classmethod
    def by_role(cls, role: str) -> "SelectionIntent":
        return cls(role=role.lower())

    def __str__(self) -> str:
        if self.copy_name:
            return f"copy '{self.copy_name}'"
        return f"{self.role} copy"


@dataclass(frozen=True)
class Task:
    """Resolved target for one access-state transition"""

    group_name: str
    group_id: int
    cluster_id: int
    copy_name: str
    copy_id: int
    enable: bool

    @classmethod
    def for_copy(cls, group_name: str, copy: Copy, enable: bool) -> "Task":
        return cls(
            group_name=group_name,
            group_id=copy.group_id,
            cluster_id=copy.cluster_id,
            copy_name=copy.name,
            copy_id=copy.copy_id,
            enable=enable,
        )


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    body: str = ""

    @property
    def accepted(self) -> bool:
        return self.status_code == 204


@dataclass
class Outcome:
    group_name: str
    status: OutcomeStatus
    copy_name: str = ""
    reason: str = ""
    simulated: bool = False
    converged: bool = True

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def as_row(self) -> dict:
        reason = self.reason
        if not self.converged and not reason:
            reason = "image access not confirmed before pollmax"
        return {
            "group": self.group_name,
            "copy": self.copy_name or "-",
            "status": self.status.value + (" (check)" if self.simulated else ""),
            "reason": reason,
        }


@dataclass
class BatchResult:
    outcomes: List[Outcome] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def failed(self) -> List[Outcome]:
        return [o for o in self.outcomes if o.failed]
