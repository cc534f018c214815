from __future__ import annotations
"""Uploader settings persistence helpers."""

from dataclasses import asdict, dataclass, replace
import json
import logging
import os
from pathlib import Path
from typing import Mapping

LOGGER = logging.getLogger(__name__)

TOKEN_AUTHORITIES = ("server", "s3")

ENVIRONMENT_OVERRIDES = {
    "BLOB_UPLOADER_API_SERVER": "api_server",
    "BLOB_UPLOADER_PROXY_SERVER": "proxy_server",
    "BLOB_UPLOADER_CONTAINER": "container_name",
}


@dataclass(frozen=True)
class UploaderSettings:
    """Endpoints and defaults injected into an upload orchestrator."""

    api_server: str = "http://localhost:3000"
    proxy_server: str = "http://localhost:8999"
    container_name: str = "upload"
    token_ttl_minutes: int = 5
    request_timeout: float = 30.0
    token_authority: str = "server"
    s3_endpoint_url: str = ""
    s3_access_key: str = ""
    s3_region: str = ""


def apply_environment(settings: UploaderSettings, environ: Mapping[str, str] | None = None) -> UploaderSettings:
    """Overlay ``BLOB_UPLOADER_*`` environment variables on ``settings``."""

    env = os.environ if environ is None else environ
    overrides = {
        attribute: env[variable].strip()
        for variable, attribute in ENVIRONMENT_OVERRIDES.items()
        if env.get(variable, "").strip()
    }
    return replace(settings, **overrides) if overrides else settings


def _text(data: dict, key: str) -> str:
    value = data.get(key, getattr(UploaderSettings, key))
    return value.strip() if isinstance(value, str) else getattr(UploaderSettings, key)


class SettingsStorage:
    """JSON-backed persistence for :class:`UploaderSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pyblobup_settings.json"
        self._path = Path(storage_path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UploaderSettings:
        if not self._path.exists():
            return UploaderSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable settings file %s", self._path)
            return UploaderSettings()
        if not isinstance(data, dict):
            return UploaderSettings()

        try:
            ttl = int(data.get("token_ttl_minutes", UploaderSettings.token_ttl_minutes))
        except (TypeError, ValueError):
            ttl = UploaderSettings.token_ttl_minutes
        if ttl <= 0:
            ttl = UploaderSettings.token_ttl_minutes

        try:
            timeout = float(data.get("request_timeout", UploaderSettings.request_timeout))
        except (TypeError, ValueError):
            timeout = UploaderSettings.request_timeout
        if timeout <= 0:
            timeout = UploaderSettings.request_timeout

        authority = data.get("token_authority", UploaderSettings.token_authority)
        if authority not in TOKEN_AUTHORITIES:
            authority = UploaderSettings.token_authority

        return UploaderSettings(
            api_server=_text(data, "api_server") or UploaderSettings.api_server,
            proxy_server=_text(data, "proxy_server") or UploaderSettings.proxy_server,
            container_name=_text(data, "container_name") or UploaderSettings.container_name,
            token_ttl_minutes=ttl,
            request_timeout=timeout,
            token_authority=authority,
            s3_endpoint_url=_text(data, "s3_endpoint_url"),
            s3_access_key=_text(data, "s3_access_key"),
            s3_region=_text(data, "s3_region"),
        )

    def load_raw_secret(self) -> str:
        """Return a plaintext ``s3_secret_key`` left in the file by hand, if any."""

        if not self._path.exists():
            return ""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return ""
        secret = data.get("s3_secret_key", "") if isinstance(data, dict) else ""
        return secret if isinstance(secret, str) else ""

    def save(self, settings: UploaderSettings) -> None:
        payload = asdict(settings)
        payload["token_ttl_minutes"] = max(int(settings.token_ttl_minutes), 1)
        payload["request_timeout"] = max(float(settings.request_timeout), 1.0)
        if settings.token_authority not in TOKEN_AUTHORITIES:
            payload["token_authority"] = UploaderSettings.token_authority
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            LOGGER.warning("Could not write settings to %s", self._path)
