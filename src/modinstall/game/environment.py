import logging
import os
import platform
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from modinstall.game.data import (
    APP_NAME,
    CONFIG_FILE_NAME,
    DATE,
    DEFAULT_PROFILE,
    OWN_VERSION,
    STORE_FILE_NAME,
)
from modinstall.helpers.errors import ConfigLoadingError, FileLoggingSetupError
from modinstall.helpers.file_ops import dump_yaml, read_yaml, running_in_venv
from modinstall.install.mod_types import ModTypeRegistry, matches_files
from modinstall.localisation.service import SupportedLanguages

LOG_FILES_TO_KEEP = 30


class ModTypeEntry(BaseModel):
    priority: int = 50
    # mod gets the type when it installs any file with one of these names
    files: list[str] = Field(default_factory=list)


class GameEntry(BaseModel):
    name: str = ""
    mods_path: str
    mod_types: dict[str, ModTypeEntry] = Field(default_factory=dict)


class ManagerConfig(BaseModel):
    lang: str | None = None
    dev_mode: bool = False
    current_game: str | None = None
    active_profile: str = DEFAULT_PROFILE
    downloads_dir: str | None = None
    store_path: str | None = None
    games: dict[str, GameEntry] = Field(default_factory=dict)


def parse_config(raw: Any) -> ManagerConfig:  # noqa: ANN401
    """Build config from loaded yaml, skipping every entry that doesn't validate."""
    config = ManagerConfig()
    if not isinstance(raw, dict):
        return config

    lang = raw.get("lang")
    if isinstance(lang, str) and lang in SupportedLanguages.list_values():
        config.lang = lang

    dev_mode = raw.get("dev_mode")
    if isinstance(dev_mode, bool):
        config.dev_mode = dev_mode

    for key in ("current_game", "active_profile", "downloads_dir", "store_path"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            setattr(config, key, value.strip())

    games = raw.get("games")
    if isinstance(games, dict):
        for game_id, game_entry in games.items():
            try:
                config.games[str(game_id)] = GameEntry.model_validate(game_entry)
            except ValidationError:
                logging.getLogger("modinstall").warning(
                    f"Ignoring invalid config entry for game '{game_id}'")

    if config.current_game is not None and config.current_game not in config.games:
        logging.getLogger("modinstall").warning(
            f"Current game '{config.current_game}' is not configured, ignoring")
        config.current_game = None
    return config


class Environment:
    """Configured games, active profile and everything needed to run the installer.

    Game counts as discovered when it has an entry with mods path in config.
    """

    def __init__(self, config: ManagerConfig | None = None,
                 config_dir: str | Path | None = None) -> None:
        self.config = config or ManagerConfig()
        self.config_dir = Path(config_dir) if config_dir is not None else None
        self.dev_mode = self.config.dev_mode
        self.os = platform.system()
        self.os_version = platform.release()
        self.log_path: str | None = None
        self.logger = logging.getLogger("modinstall")

    @property
    def current_game_id(self) -> str | None:
        return self.config.current_game

    @property
    def profile_id(self) -> str:
        return self.config.active_profile

    def is_discovered(self, game_id: str) -> bool:
        return game_id in self.config.games

    def game_name(self, game_id: str) -> str:
        entry = self.config.games.get(game_id)
        if entry is None or not entry.name:
            return game_id
        return entry.name

    def install_path(self, game_id: str) -> Path:
        entry = self.config.games.get(game_id)
        if entry is None:
            raise KeyError(f"Game '{game_id}' is not configured")
        return Path(entry.mods_path)

    @property
    def store_path(self) -> Path | None:
        if self.config.store_path:
            return Path(self.config.store_path)
        if self.config_dir is not None:
            return self.config_dir / STORE_FILE_NAME
        return None

    def build_mod_types(self) -> ModTypeRegistry:
        mod_types = ModTypeRegistry()
        for game_id, game in self.config.games.items():
            for type_id, type_entry in game.mod_types.items():
                mod_types.register(game_id, type_id, type_entry.priority,
                                   matches_files(type_entry.files))
        return mod_types

    @staticmethod
    def get_local_config_path() -> str:
        sys_exe = str(Path(sys.executable).resolve())
        if "Windows" in platform.system():
            if ".exe" in sys_exe and not running_in_venv():
                config_path = Path(sys.argv[0]).resolve().parent
            elif running_in_venv():
                config_path = Path(__file__).parent.parent
            else:
                config_path = Path(sys.argv[0]).resolve().parent
        else:
            # storing portable config around the script is undesirable on Linux, using XDG Base Dir Spec
            config_root = (os.environ.get("XDG_CONFIG_HOME")
                           or os.path.join(os.environ.get("HOME", ""), ".config"))
            if config_root == "/.config":  # valid for "nobody"
                config_path = Path(sys.argv[0]).resolve().parent
            else:
                config_path = Path(config_root, APP_NAME)
                os.makedirs(config_path, exist_ok=True)
        return str(config_path)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Environment":
        """Load environment from config file, default location is used when path is not given.

        Missing config gives defaults, config path pointing to nowhere is an error.
        """
        if config_path is None:
            config_dir = Path(cls.get_local_config_path())
            config_path = config_dir / CONFIG_FILE_NAME
            if not config_path.exists():
                return cls(ManagerConfig(), config_dir)
        config_path = Path(config_path)
        if not config_path.is_file():
            raise ConfigLoadingError(config_path, "Config file not found")
        # invalid yaml is read as None, giving default config
        return cls(parse_config(read_yaml(config_path)), config_path.parent)

    def save_config(self) -> bool:
        if self.config_dir is None:
            return False
        os.makedirs(self.config_dir, exist_ok=True)
        result = dump_yaml(self.config.model_dump(mode="json", exclude_none=True),
                           self.config_dir / CONFIG_FILE_NAME, sort_keys=False)
        if not result:
            self.logger.debug("Couldn't write new config")
        return result

    def setup_loggers(self, stream_only: bool = False) -> None:
        self.logger = logging.getLogger("modinstall")
        self.logger.propagate = False
        if self.logger.handlers and len(self.logger.handlers) > 1:
            self.logger.debug("Logger already exists, will use it with existing settings")
        else:
            self.logger.handlers.clear()
            self.logger.setLevel(logging.DEBUG)
            formatter = logging.Formatter("%(asctime)s: %(levelname)-7s - "
                                          "%(module)-11s - line %(lineno)-4d: %(message)s")

            if self.dev_mode or stream_only:
                stream_handler = logging.StreamHandler()
                stream_handler.setLevel(logging.DEBUG)
                stream_handler.setFormatter(formatter)
                self.logger.addHandler(stream_handler)

            if not stream_only:
                file_handler = logging.FileHandler(
                    os.path.join(self.log_path,
                                 f'debug_{datetime.now().strftime("%Y-%m-%d_%H-%M-%S")}.log'),
                    encoding="utf-8")
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(formatter)
                self.logger.addHandler(file_handler)

            self.logger.info(f"{APP_NAME} {OWN_VERSION} {DATE} is running on "
                             f"{self.os} {self.os_version}, loggers initialised")

    def setup_logging_folder(self) -> None:
        if self.config_dir is None:
            raise FileLoggingSetupError("", "Config directory not known when setting up file logging")

        log_path = os.path.join(self.config_dir, "logs")
        if os.path.exists(log_path):
            if not os.path.isdir(log_path):
                os.remove(log_path)
            else:
                log_files = list(Path(log_path).glob("debug_*.log"))
                if len(log_files) >= LOG_FILES_TO_KEEP:
                    limit_logs_remove_at_once = 10
                    remove_num = min(len(log_files) - LOG_FILES_TO_KEEP, limit_logs_remove_at_once)
                    for _ in range(remove_num + 1):
                        try:
                            oldest_file = min(log_files, key=lambda f: f.stat().st_ctime)
                            oldest_file.unlink()
                            log_files.remove(oldest_file)
                        except PermissionError:
                            pass

        try:
            os.makedirs(log_path, exist_ok=True)
        except OSError as ex:
            raise FileLoggingSetupError(log_path) from ex
        self.log_path = log_path
