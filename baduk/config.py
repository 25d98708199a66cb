"""User configuration stored as JSON under the XDG config directory.

A missing file means defaults. A corrupt file is backed up as .bak and
replaced by defaults. Environment variables override the file:

    BADUK_GNUGO_PATH   path to the GnuGo binary
    BADUK_HISTORY_DIR  where game records are written
"""

from __future__ import annotations

import json
import logging
import math
import os
import shutil
from dataclasses import asdict, dataclass, field
from pathlib import Path

from baduk.errors import ConfigError
from baduk.models import GameConfig, Stone

logger = logging.getLogger(__name__)

_APP_NAME = "baduk"
_BOARD_SIZES = (9, 13, 19)
_LEVELS = range(1, 11)


def _xdg_dir(env_var: str, fallback: str) -> Path:
    value = os.environ.get(env_var)
    if value:
        return Path(value)
    return Path.home() / fallback


def default_config_path() -> Path:
    return _xdg_dir("XDG_CONFIG_HOME", ".config") / _APP_NAME / "config.json"


def default_history_dir() -> Path:
    return _xdg_dir("XDG_DATA_HOME", ".local/share") / _APP_NAME / "history"


@dataclass
class GnuGoSettings:
    # Empty means auto-detect (known install paths, then PATH)
    gnugo_path: str = ""
    default_board_size: int = 19
    default_komi: float = 6.5
    default_level: int = 5


@dataclass
class Config:
    gnugo: GnuGoSettings = field(default_factory=GnuGoSettings)
    enable_recording: bool = True
    history_dir: str | None = None

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: If any setting is out of range.
        """
        settings = self.gnugo
        if settings.default_board_size not in _BOARD_SIZES:
            raise ConfigError(f"default_board_size must be one of {_BOARD_SIZES}")
        if settings.default_level not in _LEVELS:
            raise ConfigError("default_level must be between 1 and 10")
        komi = settings.default_komi
        if isinstance(komi, bool) or not isinstance(komi, (int, float)) or not math.isfinite(komi):
            raise ConfigError("default_komi must be a finite number")
        if not isinstance(settings.gnugo_path, str):
            raise ConfigError("gnugo_path must be a string")

    def resolved_history_dir(self) -> Path:
        override = os.environ.get("BADUK_HISTORY_DIR")
        if override:
            return Path(override)
        if self.history_dir:
            return Path(self.history_dir).expanduser()
        return default_history_dir()

    def resolved_gnugo_path(self) -> str:
        return os.environ.get("BADUK_GNUGO_PATH") or self.gnugo.gnugo_path

    def game_config(
        self,
        board_size: int | None = None,
        komi: float | None = None,
        player_color: Stone = Stone.BLACK,
        level: int | None = None,
    ) -> GameConfig:
        """Build a GameConfig, filling unset values from the defaults."""
        return GameConfig(
            board_size=board_size or self.gnugo.default_board_size,
            komi=self.gnugo.default_komi if komi is None else komi,
            player_color=player_color,
            engine_level=level or self.gnugo.default_level,
            engine_path=self.resolved_gnugo_path(),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Config:
        if not isinstance(data, dict):
            raise ValueError("Config file must contain a JSON object")
        gnugo = data.get("gnugo", {})
        if not isinstance(gnugo, dict):
            raise ValueError("'gnugo' must be a JSON object")
        known = GnuGoSettings.__dataclass_fields__
        return cls(
            gnugo=GnuGoSettings(**{k: v for k, v in gnugo.items() if k in known}),
            enable_recording=bool(data.get("enable_recording", True)),
            history_dir=data.get("history_dir"),
        )


def load_config(path: str | Path | None = None) -> Config:
    """Load and validate the configuration.

    Args:
        path: Config file; defaults to $XDG_CONFIG_HOME/baduk/config.json.

    Returns:
        The configuration, defaults where the file is silent.

    Raises:
        ConfigError: If the file parses but holds invalid values.
    """
    path = Path(path) if path is not None else default_config_path()
    config = Config()

    if path.exists():
        try:
            config = Config.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValueError, TypeError) as exc:
            # Backup corrupted file and start fresh
            backup_path = path.with_suffix(".bak")
            shutil.copy2(path, backup_path)
            logger.warning("Config %s is unreadable (%s); backed up to %s", path, exc, backup_path.name)
            config = Config()

    config.validate()
    return config


def save_config(config: Config, path: str | Path | None = None) -> None:
    """Save the configuration with an atomic write."""
    path = Path(path) if path is not None else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(
        json.dumps(config.to_dict(), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    os.replace(tmp_path, path)
