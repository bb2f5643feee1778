from enum import Enum


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def at_least(self, other: "Role") -> bool:
        """True when this role dominates (or equals) ``other`` in user < admin < owner."""
        return self.rank >= Role(other).rank

    @classmethod
    def parse(cls, value) -> "Role":
        """Unknown or missing roles fall back to the least privileged one."""
        normalized = str(value or "").strip().lower()
        for role in cls:
            if role.value == normalized:
                return role
        return cls.USER


_RANKS = {Role.USER: 0, Role.ADMIN: 1, Role.OWNER: 2}

STAFF_ROLES = frozenset({Role.ADMIN, Role.OWNER})
