"""Team membership on shared subscriptions."""

from entitle.teams.service import TeamService

__all__ = ["TeamService"]
