"""
Principal and judgement value types.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..domain.models import UserId


class Judgement(str, Enum):
    """Binary outcome of one authorization check."""
    ALLOW = "allow"
    DENY = "deny"

    @classmethod
    def from_bool(cls, allow: bool) -> "Judgement":
        return cls.ALLOW if allow else cls.DENY

    @property
    def is_allowed(self) -> bool:
        return self is Judgement.ALLOW


@dataclass(frozen=True)
class Principal:
    """Who is asking: the anonymous principal or an identified user."""
    user_id: Optional[UserId] = None

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls()

    @classmethod
    def user(cls, user_id: UserId) -> "Principal":
        return cls(user_id=user_id)

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def __str__(self) -> str:
        return "anonymous" if self.user_id is None else str(self.user_id)
