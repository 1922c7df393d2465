import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from modinstall.helpers.errors import UserCanceledError
from modinstall.helpers.file_ops import remove_path_async
from modinstall.helpers.parse_ops import archive_base_name, derive_install_name, sanitize_install_name
from modinstall.install.collaborators import (
    Decisions,
    DialogAction,
    DialogInput,
    DialogType,
    PackageStore,
)
from modinstall.localisation.service import tr

logger = logging.getLogger("modinstall")


@dataclass
class NameResolution:
    install_id: str
    enable: bool


class ConflictResolver:
    """Picks a free install id, negotiating with the user when the id is taken."""

    def __init__(self, store: PackageStore, decisions: Decisions) -> None:
        self.store = store
        self.decisions = decisions

    def derive_install_id(self, archive_path: str | Path, info: dict[str, Any] | None = None) -> str:
        return derive_install_name(archive_base_name(archive_path), info)

    async def remove_mod(self, game_id: str, install_id: str) -> None:
        """Deactivate mod in all profiles, delete its files and forget about it."""
        record = self.store.get(game_id, install_id)
        if record is None:
            return
        for profile_id in list(record.enabled):
            self.store.set_enabled(profile_id, game_id, install_id, False)
        if record.install_path:
            await remove_path_async(record.install_path)
        self.store.remove(game_id, install_id)
        logger.info(f"Removed mod '{install_id}' of '{game_id}'")

    async def resolve_existing(self, game_id: str, install_id: str,
                               profile_id: str, enable: bool) -> NameResolution:
        """Loop until install id is free, user replaced the existing mod, or canceled."""
        # store is re-checked every time, it might have changed while waiting for user
        while self.store.exists(game_id, install_id):
            result = await self.decisions.show_dialog(
                DialogType.QUESTION, tr("mod_exists"), tr("mod_exists_details"),
                [DialogAction.CANCEL, DialogAction.RENAME, DialogAction.REPLACE],
                [DialogInput(id="new_name", label=tr("name"), value=install_id)])
            match result.action:
                case DialogAction.RENAME:
                    new_name = sanitize_install_name(result.input.get("new_name", ""))
                    if new_name == install_id:
                        logger.debug(f"Rename to the same taken name '{install_id}', asking again")
                    install_id = new_name
                case DialogAction.REPLACE:
                    was_enabled = self.store.is_enabled(profile_id, game_id, install_id)
                    await self.remove_mod(game_id, install_id)
                    enable = enable or was_enabled
                case _:
                    raise UserCanceledError
        return NameResolution(install_id, enable)

    def find_previous_version(self, game_id: str, file_id: int) -> Any | None:  # noqa: ANN401
        """Return installed mod whose newer file version is the given file, if any."""
        found = None
        for record in self.store.list_packages(game_id):
            if record.newest_file_id != record.file_id and record.newest_file_id == file_id:
                found = record
        return found

    async def resolve_previous_version(self, game_id: str, install_id: str,
                                       file_id: int | None, profile_id: str,
                                       enable: bool) -> NameResolution:
        if file_id is None:
            return NameResolution(install_id, enable)
        old_mod = self.find_previous_version(game_id, file_id)
        if old_mod is None:
            return NameResolution(install_id, enable)

        was_enabled = self.store.is_enabled(profile_id, game_id, old_mod.install_id)
        result = await self.decisions.show_dialog(
            DialogType.QUESTION, old_mod.install_id, tr("older_version_installed"),
            [DialogAction.CANCEL, DialogAction.REPLACE, DialogAction.INSTALL])
        match result.action:
            case DialogAction.INSTALL:
                if was_enabled:
                    self.store.set_enabled(profile_id, game_id, old_mod.install_id, False)
                return NameResolution(install_id, enable or was_enabled)
            case DialogAction.REPLACE:
                await self.remove_mod(game_id, old_mod.install_id)
                # same id as the old version, so all profiles keep using it
                return NameResolution(old_mod.install_id, enable or was_enabled)
            case _:
                raise UserCanceledError

    async def resolve(self, game_id: str, install_id: str, file_id: int | None,
                      profile_id: str, enable: bool) -> NameResolution:
        resolution = await self.resolve_existing(game_id, install_id, profile_id, enable)
        resolution = await self.resolve_previous_version(
            game_id, resolution.install_id, file_id, profile_id, resolution.enable)
        # replacing the old version reuses its id, it has to be free again at this point
        return await self.resolve_existing(game_id, resolution.install_id,
                                           profile_id, resolution.enable)
