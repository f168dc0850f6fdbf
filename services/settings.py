"""Centralised configuration and secret management for the hearing notifier."""

from __future__ import annotations

import base64
import json
import os
import secrets
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

_DEFAULT_ITERATIONS = 390_000


def _default_config_dir() -> Path:
    explicit = os.environ.get("HEARINGS_CONFIG_DIR")
    if explicit:
        return Path(explicit)
    base = os.environ.get("XDG_CONFIG_HOME")
    if base:
        return Path(base) / "hearing-notifier"
    return Path.home() / ".config" / "hearing-notifier"


@dataclass
class SettingsPaths:
    config_dir: Path
    settings_file: Path
    secrets_file: Path
    master_key_file: Path

    @classmethod
    def under(cls, config_dir: Path) -> "SettingsPaths":
        return cls(
            config_dir=config_dir,
            settings_file=config_dir / "settings.json",
            secrets_file=config_dir / "secrets.enc",
            master_key_file=config_dir / "master.key",
        )


class SettingsManager:
    """Plain JSON settings plus a Fernet-encrypted secrets file.

    Plain settings hold operator tunables (SMTP host, poll interval, database
    location). Secrets such as the SMTP password are encrypted with a key
    derived from ``HEARINGS_SECRET_KEY`` or, when that is unset, from a
    generated ``master.key`` kept next to the settings file.
    """

    SETTINGS_SCHEMA_VERSION = 1

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        self.paths = SettingsPaths.under(Path(config_dir) if config_dir else _default_config_dir())
        self.paths.config_dir.mkdir(parents=True, exist_ok=True)

        self._settings: Dict[str, Any] = {}
        self._load_settings()

        self.default_passphrase: Optional[str] = (
            os.environ.get("HEARINGS_SECRET_KEY") or self._load_or_create_master_key()
        )
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Plain settings
    # ------------------------------------------------------------------
    def get(self, key: str, default: Any = None) -> Any:
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self._save_settings()

    def delete(self, key: str) -> None:
        if self._settings.pop(key, None) is not None:
            self._save_settings()

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------
    def get_secret(self, key: str, default: Any = None, passphrase: Optional[str] = None) -> Any:
        return self._load_secrets(passphrase).get(key, default)

    def set_secret(self, key: str, value: Any, passphrase: Optional[str] = None) -> None:
        payload = self._load_secrets(passphrase)
        payload[key] = value
        self._store_secrets(payload, passphrase)

    def delete_secret(self, key: str, passphrase: Optional[str] = None) -> None:
        payload = self._load_secrets(passphrase)
        if key in payload:
            payload.pop(key)
            self._store_secrets(payload, passphrase)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load_settings(self) -> None:
        try:
            with self.paths.settings_file.open("r", encoding="utf-8") as fh:
                self._settings = json.load(fh)
        except FileNotFoundError:
            self._settings = {}
        except json.JSONDecodeError as exc:
            raise RuntimeError(
                f"{self.paths.settings_file} is corrupted; please repair or delete it."
            ) from exc

    def _save_settings(self) -> None:
        self.paths.config_dir.mkdir(parents=True, exist_ok=True)
        with self.paths.settings_file.open("w", encoding="utf-8") as fh:
            json.dump(self._settings, fh, indent=2, sort_keys=True)

    def _ensure_schema(self) -> None:
        if int(self._settings.get("schema_version", 0)) >= self.SETTINGS_SCHEMA_VERSION:
            return
        self._settings["schema_version"] = self.SETTINGS_SCHEMA_VERSION
        self._settings.setdefault("secret_iterations", _DEFAULT_ITERATIONS)
        if "secret_salt" not in self._settings:
            self._settings["secret_salt"] = base64.urlsafe_b64encode(os.urandom(16)).decode("utf-8")
        self._save_settings()

    def _load_or_create_master_key(self) -> str:
        key_path = self.paths.master_key_file
        if key_path.exists():
            key = key_path.read_text(encoding="utf-8").strip()
            if key:
                return key

        key = secrets.token_urlsafe(32)
        key_path.write_text(key, encoding="utf-8")
        try:
            key_path.chmod(0o600)
        except OSError:
            pass  # not supported on every filesystem
        return key

    def _fernet(self, passphrase: Optional[str]) -> Fernet:
        actual = passphrase or self.default_passphrase
        if not actual:
            raise RuntimeError(
                "Secret passphrase required. Set HEARINGS_SECRET_KEY or provide passphrase explicitly."
            )
        salt_b64 = self._settings.get("secret_salt")
        if not salt_b64:
            raise RuntimeError("Settings missing secret salt; try reinitialising configuration.")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=base64.urlsafe_b64decode(salt_b64),
            iterations=int(self._settings.get("secret_iterations", _DEFAULT_ITERATIONS)),
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(actual.encode("utf-8"))))

    def _load_secrets(self, passphrase: Optional[str]) -> Dict[str, Any]:
        if not self.paths.secrets_file.exists():
            return {}
        try:
            decrypted = self._fernet(passphrase).decrypt(self.paths.secrets_file.read_bytes())
        except InvalidToken as exc:
            raise RuntimeError("Unable to decrypt secrets store. Invalid passphrase?") from exc
        try:
            return json.loads(decrypted.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise RuntimeError("Secrets store is corrupted.") from exc

    def _store_secrets(self, payload: Dict[str, Any], passphrase: Optional[str]) -> None:
        token = self._fernet(passphrase).encrypt(json.dumps(payload).encode("utf-8"))
        self.paths.secrets_file.write_bytes(token)


@lru_cache(maxsize=1)
def get_settings_manager() -> SettingsManager:
    """Return the process-wide settings manager, created on first use."""

    return SettingsManager()
