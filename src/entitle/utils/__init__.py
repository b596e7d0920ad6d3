"""Utility modules for Entitle."""

from entitle.utils.exceptions import EntitleError

__all__ = ["EntitleError"]
