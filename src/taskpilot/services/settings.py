"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import ClientSettings
from ..ai.planning.types import ConfigurationError, PlanningConfig

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "SecretProvider",
    "FernetSecretProvider",
    "redact_secret",
    "default_settings_path",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".taskpilot"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "TASKPILOT_API_KEY": "api_key",
    "TASKPILOT_BASE_URL": "base_url",
    "TASKPILOT_MODEL": "model",
    "TASKPILOT_ORGANIZATION": "organization",
    "TASKPILOT_REPLAN_STRATEGY": "replan_strategy",
    "TASKPILOT_LOG_LEVEL": "log_level",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "TASKPILOT_DEBUG_LOGGING": "debug_logging",
    "TASKPILOT_PLANNING_ENABLED": "planning_enabled",
    "TASKPILOT_CLEAR_PLAN_ON_FINISH": "clear_plan_on_finish",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "TASKPILOT_REQUEST_TIMEOUT": "request_timeout",
    "TASKPILOT_TEMPERATURE": "temperature",
    "TASKPILOT_TOOL_TIMEOUT": "tool_timeout_seconds",
    "TASKPILOT_RETRY_BACKOFF": "retry_backoff_seconds",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "TASKPILOT_MAX_TASKS": "max_tasks",
    "TASKPILOT_MAX_REPLANS": "max_replans",
    "TASKPILOT_MAX_STEPS": "max_steps_per_task",
    "TASKPILOT_MAX_RETRIES": "max_retries",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"


def default_settings_path() -> Path:
    return _SETTINGS_DIR / "settings.json"


@dataclass(slots=True)
class Settings:
    """User-facing configuration persisted between runs."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    temperature: float = 0.2
    debug_logging: bool = False
    log_level: str = "INFO"
    planning_enabled: bool = True
    max_tasks: int = 20
    max_replans: int = 2
    max_steps_per_task: int = 10
    replan_strategy: str = "skip_blocked"
    retry_backoff_seconds: float = 1.0
    tool_timeout_seconds: float | None = 30.0
    clear_plan_on_finish: bool = True

    def to_client_settings(self) -> ClientSettings:
        """Build the model client configuration.

        Raises:
            ConfigurationError: If no API key or model is configured.
        """
        if not self.api_key:
            raise ConfigurationError(
                "No API key configured; set TASKPILOT_API_KEY or use --set api_key=...", "api_key"
            )
        if not self.model:
            raise ConfigurationError("No model configured", "model")
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            temperature=self.temperature,
            debug_logging=self.debug_logging,
        )

    def to_planning_config(self) -> PlanningConfig:
        """Build the planning configuration; invalid values raise ConfigurationError."""
        return PlanningConfig(
            enabled=self.planning_enabled,
            max_tasks=self.max_tasks,
            max_replans=self.max_replans,
            max_steps_per_task=self.max_steps_per_task,
            replan_strategy=self.replan_strategy,  # type: ignore[arg-type]
            retry_backoff_seconds=self.retry_backoff_seconds,
            tool_timeout_seconds=self.tool_timeout_seconds,
            clear_on_finish=self.clear_plan_on_finish,
        )


class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SecretVault:
    """Encrypts and decrypts sensitive strings for settings persistence.

    Tokens are stored as ``<provider>:<payload>`` so the backend can change
    without losing existing secrets.
    """

    def __init__(self, *, key_path: Path | None = None, provider: SecretProvider | None = None) -> None:
        self._provider = provider or FernetSecretProvider(key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self._provider.name}:{self._provider.encrypt(secret)}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``.

        Raises:
            ValueError: If the token was produced with a different key.
        """
        if not token:
            return ""
        prefix, payload = self._split_token(token)
        if prefix is not None and prefix != self._provider.name:
            LOGGER.warning("Unknown secret token prefix %s; returning ciphertext.", prefix)
            return token
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    @staticmethod
    def _split_token(token: str) -> tuple[str | None, str]:
        if ":" not in token:
            return None, token
        prefix, payload = token.split(":", 1)
        return (prefix or None), payload


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or default_settings_path()
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, then apply CLI and environment overrides.

        Environment variables win over CLI overrides, which win over the file.
        """
        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            plaintext_key, migrated = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            needs_migration = migrated
            try:
                settings = Settings(**_filter_fields(payload))
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""
        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
