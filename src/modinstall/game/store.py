import logging
import os
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from modinstall.helpers.file_ops import dump_yaml, read_yaml

logger = logging.getLogger("modinstall")


class PackageState(StrEnum):
    INSTALLING = "installing"
    INSTALLED = "installed"


class PackageRecord(BaseModel):
    game_id: str
    install_id: str
    state: PackageState = PackageState.INSTALLING
    install_path: str = ""
    archive_path: str | None = None
    download_id: str | None = None
    type: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)
    enabled: dict[str, bool] = Field(default_factory=dict)

    @property
    def file_id(self) -> int | None:
        return self.attributes.get("file_id")

    @property
    def newest_file_id(self) -> int | None:
        return self.attributes.get("newest_file_id")


class YamlPackageStore:
    """Installed packages keyed by (game id, install id), persisted as a yaml file.

    Without a path the store is kept only in memory.
    """

    def __init__(self, store_path: str | Path | None = None) -> None:
        self.store_path = Path(store_path) if store_path is not None else None
        self.packages: dict[str, dict[str, PackageRecord]] = {}
        if self.store_path is not None and self.store_path.exists():
            self.load()

    def load(self) -> None:
        raw = read_yaml(self.store_path)
        self.packages = {}
        if not isinstance(raw, dict):
            return
        for game_id, game_packages in raw.items():
            if not isinstance(game_packages, dict):
                logger.warning(f"Ignoring broken store entry for game '{game_id}'")
                continue
            for install_id, raw_record in game_packages.items():
                try:
                    record = PackageRecord(**raw_record, game_id=game_id, install_id=install_id)
                except (TypeError, ValidationError):
                    logger.exception(f"Ignoring broken package record '{game_id}/{install_id}'")
                    continue
                self.packages.setdefault(str(game_id), {})[str(install_id)] = record
        logger.info(f"Loaded package store with {sum(len(v) for v in self.packages.values())} record(s)")

    def save(self) -> None:
        if self.store_path is None:
            return
        os.makedirs(self.store_path.parent, exist_ok=True)
        serialised = {
            game_id: {install_id: record.model_dump(mode="json", exclude={"game_id", "install_id"})
                      for install_id, record in game_packages.items()}
            for game_id, game_packages in self.packages.items()}
        if not dump_yaml(serialised, self.store_path, sort_keys=False):
            logger.error(f"Couldn't save package store to '{self.store_path}'")

    def exists(self, game_id: str, install_id: str) -> bool:
        return install_id in self.packages.get(game_id, {})

    def get(self, game_id: str, install_id: str) -> PackageRecord | None:
        return self.packages.get(game_id, {}).get(install_id)

    def list_packages(self, game_id: str) -> list[PackageRecord]:
        return list(self.packages.get(game_id, {}).values())

    def create(self, game_id: str, install_id: str, **kwargs: Any) -> PackageRecord:  # noqa: ANN401
        if self.exists(game_id, install_id):
            raise KeyError(f"Package '{install_id}' already exists for '{game_id}'")
        record = PackageRecord(game_id=game_id, install_id=install_id, **kwargs)
        self.packages.setdefault(game_id, {})[install_id] = record
        self.save()
        return record

    def remove(self, game_id: str, install_id: str) -> None:
        if self.packages.get(game_id, {}).pop(install_id, None) is not None:
            self.save()

    def _require(self, game_id: str, install_id: str) -> PackageRecord:
        record = self.get(game_id, install_id)
        if record is None:
            raise KeyError(f"Unknown package '{install_id}' for '{game_id}'")
        return record

    def set_attribute(self, game_id: str, install_id: str, key: str, value: Any) -> None:  # noqa: ANN401
        self._require(game_id, install_id).attributes[key] = value
        self.save()

    def set_type(self, game_id: str, install_id: str, mod_type: str) -> None:
        self._require(game_id, install_id).type = mod_type
        self.save()

    def set_install_path(self, game_id: str, install_id: str, path: str | Path) -> None:
        self._require(game_id, install_id).install_path = str(path)
        self.save()

    def set_enabled(self, profile_id: str, game_id: str, install_id: str, enabled: bool) -> None:
        self._require(game_id, install_id).enabled[profile_id] = enabled
        self.save()

    def is_enabled(self, profile_id: str, game_id: str, install_id: str) -> bool:
        record = self.get(game_id, install_id)
        return record is not None and record.enabled.get(profile_id, False)

    def mark_installed(self, game_id: str, install_id: str) -> None:
        self._require(game_id, install_id).state = PackageState.INSTALLED
        self.save()
