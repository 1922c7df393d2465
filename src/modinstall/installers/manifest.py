"""Installer for archives describing their own layout.

Archive carries ``modinstall.yaml`` at its root (or inside the single
wrapping directory) with a list of instructions, for example::

    mod_type: plugin
    instructions:
      - type: copy
        source: data/foo.esp
        destination: foo.esp
      - type: iniedit
        destination: game.ini
        section: Display
        key: iSize
        value: "1024"

Sources are relative to the directory holding the manifest.
"""
import logging
from pathlib import Path

import aiofiles
from pydantic import ValidationError

from modinstall.game.data import INSTALLER_MANIFEST_NAME
from modinstall.helpers.file_ops import load_yaml
from modinstall.install.collaborators import ProgressCallback, SupportResult
from modinstall.install.instructions import (
    CopyInstruction,
    ErrorInstruction,
    InstallOutcome,
    SetModTypeInstruction,
    SubmoduleInstruction,
    parse_instructions,
)
from modinstall.installers.fallback import wrapping_dir

logger = logging.getLogger("modinstall")

MANIFEST_PRIORITY = 20


def find_manifest(file_list: list[str]) -> str | None:
    root = wrapping_dir(file_list)
    for entry in file_list:
        if entry.lower() == f"{root}{INSTALLER_MANIFEST_NAME}".lower():
            return entry
    return None


def test_supported(file_list: list[str], game_id: str) -> SupportResult:
    manifest = find_manifest(file_list)
    if manifest is None:
        return SupportResult(supported=False)
    return SupportResult(supported=True, required_files=[manifest])


async def install(file_list: list[str], staging_path: Path, game_id: str,
                  progress: ProgressCallback) -> InstallOutcome:
    manifest = find_manifest(file_list)
    if manifest is None:
        return InstallOutcome([ErrorInstruction(message=f"{INSTALLER_MANIFEST_NAME} not found")])

    async with aiofiles.open(Path(staging_path, manifest), encoding="utf-8") as fh:
        raw = load_yaml(await fh.read())

    if not isinstance(raw, dict) or not isinstance(raw.get("instructions"), list):
        logger.error(f"Manifest '{manifest}' has no list of instructions")
        return InstallOutcome([ErrorInstruction(
            message=f"{manifest}: expected 'instructions' list")])

    try:
        instructions = parse_instructions(raw["instructions"])
    except ValidationError as ex:
        logger.error(f"Invalid instructions in '{manifest}': {ex}")
        return InstallOutcome([ErrorInstruction(message=f"{manifest}: {ex}")])

    root = manifest[:-len(INSTALLER_MANIFEST_NAME)]
    if root:
        instructions = [
            instr.model_copy(update={"source": root + instr.source})
            if isinstance(instr, CopyInstruction)
            else instr.model_copy(update={"path": root + instr.path})
            if isinstance(instr, SubmoduleInstruction)
            else instr
            for instr in instructions]

    mod_type = raw.get("mod_type")
    if isinstance(mod_type, str) and mod_type:
        instructions.append(SetModTypeInstruction(value=mod_type))

    progress(100)
    return InstallOutcome(instructions)
