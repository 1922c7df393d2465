import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

from modinstall.game.data import INI_TWEAKS_PATH, STAGING_SUFFIX
from modinstall.helpers.errors import (
    EmptyInstructionsError,
    InstallerReportedError,
    UserCanceledError,
)
from modinstall.helpers.file_ops import (
    ensure_dir_async,
    get_md5_async,
    remove_path_async,
    transfer_file,
    write_file_async,
)
from modinstall.helpers.parse_ops import safe_join, sanitize_install_name
from modinstall.install.collaborators import Notifier, NotificationType
from modinstall.install.context import InstallContext
from modinstall.install.instructions import (
    AttributeInstruction,
    CopyInstruction,
    GenerateFileInstruction,
    IniEditInstruction,
    InstallOutcome,
    MkDirInstruction,
    SetModTypeInstruction,
    SubmoduleInstruction,
    UnsupportedInstruction,
    group_instructions,
)
from modinstall.localisation.service import tr

logger = logging.getLogger("modinstall")

# (archive_path, staging_path, game_id) -> outcome of the installer chosen for that archive
PrepareFunc = Callable[[Path, Path, str], Awaitable[InstallOutcome]]


def render_ini_fragment(edits: list[IniEditInstruction]) -> str:
    """Render edits for one file, one header per section in order of first appearance."""
    by_section: dict[str, list[IniEditInstruction]] = {}
    for edit in edits:
        by_section.setdefault(edit.section, []).append(edit)

    return "\n".join(
        "\n".join([f"[{section}]", *(edit.render() for edit in section_edits)])
        for section, section_edits in by_section.items())


class InstructionExecutor:
    """Applies installer instructions to the mod directory, group by group.

    Order of groups is fixed: directories, files from the archive, generated
    files, ini tweaks, submodules, attributes and finally mod type.
    """

    def __init__(self, notifier: Notifier, prepare: PrepareFunc) -> None:
        self.notifier = notifier
        self.prepare = prepare

    async def apply(self, outcome: InstallOutcome, archive_path: Path,
                    staging_path: Path, destination_path: Path,
                    game_id: str, context: InstallContext) -> None:
        if outcome.instructions is None:
            # installer has already shown what went wrong, don't report again
            raise UserCanceledError("installer reported failure")

        if not outcome.instructions:
            raise EmptyInstructionsError

        groups = group_instructions(outcome.instructions)

        if groups.error:
            messages = [instr.message for instr in groups.error]
            self.notifier.send_notification(NotificationType.ERROR, tr("installer_failed"),
                                            "\n".join(messages))
            raise InstallerReportedError(messages)

        logger.debug(f"Installer instructions: {groups}")
        await self.report_unsupported(groups.unsupported, archive_path)

        await self.process_mkdir(groups.mkdir, destination_path)
        await self.process_copies(groups.copy, archive_path, staging_path, destination_path)
        await self.process_generate_files(groups.generatefile, destination_path)
        await self.process_ini_edits(groups.iniedit, destination_path)
        await self.process_submodules(groups.submodule, staging_path,
                                      destination_path, game_id, context)
        self.process_attributes(groups.attribute, context)
        self.process_set_mod_type(groups.setmodtype, context)

    async def report_unsupported(self, unsupported: list[UnsupportedInstruction],
                                 archive_path: Path) -> None:
        if not unsupported:
            return
        missing = list(dict.fromkeys(instr.function for instr in unsupported))
        details = [tr("missing_instructions", functions=", ".join(missing)),
                   tr("installer_name", name=archive_path.name)]
        if archive_path.is_file():
            details.append(f"MD5: {await get_md5_async(archive_path)}")
        logger.warning(f"Installer uses unsupported functions: {missing}")
        self.notifier.send_notification(NotificationType.INFO, tr("installer_unsupported"),
                                        tr("installer_unsupported_details") + "\n"
                                        + "\n".join(details))

    async def process_mkdir(self, instructions: list[MkDirInstruction],
                            destination_path: Path) -> None:
        for instruction in instructions:
            await ensure_dir_async(safe_join(destination_path, instruction.destination))

    async def process_copies(self, copies: list[CopyInstruction], archive_path: Path,
                             staging_path: Path, destination_path: Path) -> None:
        await ensure_dir_async(destination_path)
        source_map: dict[str, list[str]] = {}
        for copy in copies:
            source_map.setdefault(copy.source, []).append(copy.destination)

        missing_files = []
        for source_rel, destinations in source_map.items():
            source_path = safe_join(staging_path, source_rel)
            # sequential, as the last destination takes the file away from staging
            for idx, dest_rel in enumerate(destinations):
                dest_path = safe_join(destination_path, dest_rel)
                try:
                    await transfer_file(source_path, dest_path, move=idx == len(destinations) - 1)
                except FileNotFoundError:
                    if not source_path.exists():
                        missing_files.append(source_rel)
                        break
                    raise

        if missing_files:
            logger.warning(f"Installer referenced files missing from archive: {missing_files}")
            self.notifier.send_notification(
                NotificationType.WARNING, tr("invalid_installer"),
                tr("installer_missing_files", name=archive_path.name) + "\n\n"
                + "\n".join(f"- {name}" for name in missing_files))

    async def process_generate_files(self, instructions: list[GenerateFileInstruction],
                                     destination_path: Path) -> None:
        for instruction in instructions:
            await write_file_async(safe_join(destination_path, instruction.destination),
                                   instruction.content)

    async def process_ini_edits(self, ini_edits: list[IniEditInstruction],
                                destination_path: Path) -> None:
        if not ini_edits:
            return

        by_destination: dict[str, list[IniEditInstruction]] = {}
        for edit in ini_edits:
            by_destination.setdefault(edit.destination, []).append(edit)

        tweaks_root = destination_path / INI_TWEAKS_PATH
        await ensure_dir_async(tweaks_root)
        for destination, edits in by_destination.items():
            await write_file_async(safe_join(tweaks_root, destination), render_ini_fragment(edits))

    async def process_submodules(self, submodules: list[SubmoduleInstruction],
                                 staging_path: Path, destination_path: Path,
                                 game_id: str, context: InstallContext) -> None:
        # one after another, later submodules may rely on files of previous ones
        for submodule in submodules:
            archive_path = (Path(submodule.path) if os.path.isabs(submodule.path)
                            else safe_join(staging_path, submodule.path))
            nested_staging = Path(
                f"{destination_path}.{sanitize_install_name(submodule.key)}{STAGING_SUFFIX}")
            logger.info(f"Installing submodule '{submodule.key}' from '{archive_path}'")
            try:
                outcome = await self.prepare(archive_path, nested_staging, game_id)
                await self.apply(outcome, archive_path, nested_staging,
                                 destination_path, game_id, context)
                if submodule.submodule_type is not None:
                    context.set_mod_type(submodule.submodule_type)
            finally:
                await remove_path_async(nested_staging)

    def process_attributes(self, attributes: list[AttributeInstruction],
                           context: InstallContext) -> None:
        for attribute in attributes:
            context.set_attribute(attribute.key, attribute.value)

    def process_set_mod_type(self, types: list[SetModTypeInstruction],
                             context: InstallContext) -> None:
        if not types:
            return
        # TODO: find out if installers ever emit several types on purpose, only last one is used
        if len(types) > 1:
            logger.warning(f"Got more than one mod type, only the last was used: "
                           f"{[mod_type.value for mod_type in types]}")
        context.set_mod_type(types[-1].value)
