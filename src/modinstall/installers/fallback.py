"""Installer of last resort: takes the archive content as is."""
import logging
from pathlib import Path

from modinstall.install.collaborators import ProgressCallback, SupportResult
from modinstall.install.instructions import (
    CopyInstruction,
    InstallOutcome,
    Instruction,
    MkDirInstruction,
)

logger = logging.getLogger("modinstall")

FALLBACK_PRIORITY = 100


def wrapping_dir(file_list: list[str]) -> str:
    """Return the single top level directory (with trailing slash) holding everything, if any.

    Archives are often packed with one folder named after the mod,
    that folder is not part of the mod layout.
    """
    top_level = {entry.split("/", 1)[0] for entry in file_list}
    if len(top_level) != 1:
        return ""
    root = top_level.pop() + "/"
    if root not in file_list or all(entry == root for entry in file_list):
        return ""
    return root


def test_supported(file_list: list[str], game_id: str) -> SupportResult:
    return SupportResult(supported=True)


def install(file_list: list[str], staging_path: Path, game_id: str,
            progress: ProgressCallback) -> InstallOutcome:
    root = wrapping_dir(file_list)
    if root:
        logger.debug(f"Skipping wrapping directory '{root}'")

    instructions: list[Instruction] = []
    total = len(file_list) or 1
    for idx, entry in enumerate(file_list):
        relative = entry[len(root):]
        if not relative:
            continue
        if entry.endswith("/"):
            # non-empty directories are created along with their files
            if not any(other != entry and other.startswith(entry) for other in file_list):
                instructions.append(MkDirInstruction(destination=relative.rstrip("/")))
        else:
            instructions.append(CopyInstruction(source=entry, destination=relative))
        progress((idx + 1) * 100 / total)
    return InstallOutcome(instructions)
