"""Value objects shared by stockroom services."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FulfillmentPolicy(str, Enum):
    """What happens to an order when some of its lines cannot be assigned.

    BEST_EFFORT keeps every line that succeeded; the remaining lines are
    retried on the next fulfillment call. ALL_OR_NOTHING rolls back every
    claim made by the run as soon as one line fails.
    """

    BEST_EFFORT = "best_effort"
    ALL_OR_NOTHING = "all_or_nothing"

    @classmethod
    def from_setting(cls, value) -> "FulfillmentPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown fulfillment policy: {value!r}")


@dataclass(frozen=True)
class AssignedBy:
    """Who performed a stock assignment.

    Either the system (payment flow) or an admin user.

    Usage:
        AssignedBy.system()
        AssignedBy.admin(request.user.pk)
    """

    kind: str
    admin_id: Optional[int] = None

    SYSTEM = "system"
    ADMIN = "admin"

    @classmethod
    def system(cls) -> "AssignedBy":
        return cls(kind=cls.SYSTEM)

    @classmethod
    def admin(cls, admin_id) -> "AssignedBy":
        if admin_id is None:
            raise ValueError("AssignedBy.admin() requires an admin id")
        return cls(kind=cls.ADMIN, admin_id=admin_id)

    @property
    def is_admin(self) -> bool:
        return self.kind == self.ADMIN

    def as_metadata(self) -> dict:
        """Serializable form stored alongside claimed stock items."""
        if self.is_admin:
            return {"kind": self.ADMIN, "admin_id": str(self.admin_id)}
        return {"kind": self.SYSTEM}

    def __str__(self):
        if self.is_admin:
            return f"admin:{self.admin_id}"
        return self.SYSTEM
