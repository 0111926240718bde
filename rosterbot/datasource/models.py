"""
Roster member models.
"""

from pydantic import BaseModel, Field


class Member(BaseModel):
    """A single community member as seen by the roster directory."""

    id: str
    display_name: str
    roles: list[str] = Field(default_factory=list)

    def has_role(self, role_name: str) -> bool:
        return role_name in self.roles


# member id -> member
MemberSet = dict[str, Member]


def filter_by_role(members: MemberSet, role_name: str | None) -> MemberSet:
    """Members holding the named role (all members when no role is given)."""
    if role_name is None:
        return dict(members)
    return {mid: m for mid, m in members.items() if m.has_role(role_name)}
