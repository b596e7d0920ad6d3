"""Custom exceptions for Entitle."""


class EntitleError(Exception):
    """Base exception for all Entitle errors."""

    pass
