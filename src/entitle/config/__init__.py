"""Configuration module for Entitle."""

from entitle.config.settings import (
    PlanPricing,
    Settings,
    TokenCacheBackend,
    WebhookFormat,
    get_settings,
)

__all__ = ["PlanPricing", "Settings", "TokenCacheBackend", "WebhookFormat", "get_settings"]
