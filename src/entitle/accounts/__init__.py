"""User accounts, sessions and the desktop auth handoff."""

from entitle.accounts.service import AccountService, AuthResult

__all__ = ["AccountService", "AuthResult"]
