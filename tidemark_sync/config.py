"""
Settings for the sync engine.

Configuration in ~/.tidemark/settings.yaml:

```yaml
data_dir: ~/.tidemark/data
debounce_seconds: 1.0
cooldown_seconds: 5.0
retry:
  max_attempts: 3
  backoff_base: 1.0
webdav:
  enabled: true
  url: "https://dav.example.com/remote.php/dav/files/alice/"
  username: "alice"
  password: "app-password"
  path: "/tidemark"
  sync_interval_minutes: 30
remotestorage:
  enabled: false
  base_url: "https://storage.example.com/alice"
  token: "..."
```

Environment variables override the file:
- TIDEMARK_DATA_DIR
- TIDEMARK_WEBDAV_URL, TIDEMARK_WEBDAV_USERNAME, TIDEMARK_WEBDAV_PASSWORD
- TIDEMARK_REMOTESTORAGE_URL, TIDEMARK_REMOTESTORAGE_TOKEN

Setting a backend's URL through the environment also enables it.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ValidationError
from .remote.retry import RetryConfig

DEFAULT_CONFIG_PATH = Path.home() / ".tidemark" / "settings.yaml"
DEFAULT_DATA_DIR = Path.home() / ".tidemark" / "data"


@dataclass
class WebDAVSettings:
    enabled: bool = False
    url: str = ""
    username: str = ""
    password: str = ""
    path: str = "/tidemark"
    sync_interval_minutes: int = 30


@dataclass
class RemoteStorageSettings:
    enabled: bool = False
    base_url: str = ""
    token: str = ""


def _section(cls: type, data: Any, name: str) -> Any:
    """Build a settings dataclass from a mapping, ignoring unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ValidationError(name, "must be a mapping", type(data).__name__)
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SyncSettings:
    """Everything needed to build a sync orchestrator."""

    data_dir: Path = DEFAULT_DATA_DIR
    debounce_seconds: float = 1.0
    cooldown_seconds: float = 5.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    webdav: WebDAVSettings = field(default_factory=WebDAVSettings)
    remotestorage: RemoteStorageSettings = field(default_factory=RemoteStorageSettings)

    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SyncSettings:
        if not isinstance(data, Mapping):
            raise ValidationError("settings", "must be a mapping", type(data).__name__)
        settings = cls(
            retry=_section(RetryConfig, data.get("retry"), "retry"),
            webdav=_section(WebDAVSettings, data.get("webdav"), "webdav"),
            remotestorage=_section(
                RemoteStorageSettings, data.get("remotestorage"), "remotestorage"
            ),
        )
        if data.get("data_dir"):
            settings.data_dir = Path(str(data["data_dir"])).expanduser()
        for key in ("debounce_seconds", "cooldown_seconds"):
            if key in data:
                value = data[key]
                if isinstance(value, bool) or not isinstance(value, int | float):
                    raise ValidationError(key, "must be a number", repr(value))
                setattr(settings, key, float(value))
        return settings

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> SyncSettings:
        """Load settings from YAML, then apply environment overrides.

        Args:
            config_path: Path to settings.yaml. Defaults to ~/.tidemark/settings.yaml
            environ: Environment mapping (defaults to os.environ)

        Returns:
            SyncSettings; defaults when the file does not exist

        Raises:
            ValidationError: If the file is not valid YAML or has the wrong shape
        """
        path = config_path or DEFAULT_CONFIG_PATH
        data: Any = {}
        if path.exists():
            try:
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as e:
                raise ValidationError(str(path), f"invalid YAML: {e}") from e

        settings = cls.from_dict(data)
        settings.config_path = path
        settings.apply_env(os.environ if environ is None else environ)
        return settings

    def apply_env(self, environ: Mapping[str, str]) -> None:
        if environ.get("TIDEMARK_DATA_DIR"):
            self.data_dir = Path(environ["TIDEMARK_DATA_DIR"]).expanduser()

        if environ.get("TIDEMARK_WEBDAV_URL"):
            self.webdav.url = environ["TIDEMARK_WEBDAV_URL"]
            self.webdav.enabled = True
        if environ.get("TIDEMARK_WEBDAV_USERNAME"):
            self.webdav.username = environ["TIDEMARK_WEBDAV_USERNAME"]
        if environ.get("TIDEMARK_WEBDAV_PASSWORD"):
            self.webdav.password = environ["TIDEMARK_WEBDAV_PASSWORD"]

        if environ.get("TIDEMARK_REMOTESTORAGE_URL"):
            self.remotestorage.base_url = environ["TIDEMARK_REMOTESTORAGE_URL"]
            self.remotestorage.enabled = True
        if environ.get("TIDEMARK_REMOTESTORAGE_TOKEN"):
            self.remotestorage.token = environ["TIDEMARK_REMOTESTORAGE_TOKEN"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_dir": str(self.data_dir),
            "debounce_seconds": self.debounce_seconds,
            "cooldown_seconds": self.cooldown_seconds,
            "retry": asdict(self.retry),
            "webdav": asdict(self.webdav),
            "remotestorage": asdict(self.remotestorage),
        }

    def save(self, config_path: Path | None = None) -> Path:
        """Write the settings back as YAML."""
        path = config_path or self.config_path or DEFAULT_CONFIG_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False), encoding="utf-8")
        self.config_path = path
        return path
