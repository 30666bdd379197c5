"""Application services."""

from .settings import Settings, SettingsStore, SecretVault, redact_secret

__all__ = ["Settings", "SettingsStore", "SecretVault", "redact_secret"]
