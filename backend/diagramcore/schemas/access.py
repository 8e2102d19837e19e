"""
DiagramCore - Roles and Actions
===============================

What:  The ordered role ladder and the actions it governs.
How:   Role is a string enum (stored as-is in share rows) with an explicit
       rank, an `implies` relation and an action table. OWNER is derived
       from diagram ownership and can never be granted through a share.

    viewer  <  editor  <  owner_delegate  <  owner
    {read}     +write     +share +delete     (all)
"""

from enum import Enum
from typing import FrozenSet, Optional


class Action(str, Enum):
    """Operations an actor can attempt on a diagram."""

    READ = "read"
    WRITE = "write"
    SHARE = "share"
    DELETE = "delete"


class Role(str, Enum):
    """Privilege level of an actor on a diagram."""

    VIEWER = "viewer"
    EDITOR = "editor"
    OWNER_DELEGATE = "owner_delegate"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def actions(self) -> FrozenSet[Action]:
        return _ACTIONS[self]

    @property
    def grantable(self) -> bool:
        return self is not Role.OWNER

    def implies(self, other: "Role") -> bool:
        """True when holding this role grants everything `other` grants."""
        return self.rank >= other.rank

    def allows(self, action: Action) -> bool:
        return action in self.actions

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        """
        Parse a role name, accepting the legacy 'view' / 'edit' spellings.

        Raises:
            ValueError: Unknown role name.
        """
        if isinstance(value, Role):
            return value
        normalized = value.strip().lower().replace("-", "_")
        normalized = _LEGACY_NAMES.get(normalized, normalized)
        return cls(normalized)

    @staticmethod
    def most_privileged(*roles: Optional["Role"]) -> Optional["Role"]:
        """Highest-ranked role among the arguments, ignoring None."""
        present = [role for role in roles if role is not None]
        if not present:
            return None
        return max(present, key=lambda role: role.rank)


_RANKS = {
    Role.VIEWER: 1,
    Role.EDITOR: 2,
    Role.OWNER_DELEGATE: 3,
    Role.OWNER: 4,
}

_FULL = frozenset({Action.READ, Action.WRITE, Action.SHARE, Action.DELETE})

_ACTIONS = {
    Role.VIEWER: frozenset({Action.READ}),
    Role.EDITOR: frozenset({Action.READ, Action.WRITE}),
    Role.OWNER_DELEGATE: _FULL,
    Role.OWNER: _FULL,
}

# Share rows written before the role ladder used these names
_LEGACY_NAMES = {
    "view": "viewer",
    "edit": "editor",
    "delegate": "owner_delegate",
}
