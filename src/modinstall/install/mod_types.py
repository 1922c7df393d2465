import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from modinstall.install.instructions import CopyInstruction, Instruction
from modinstall.install.registry import maybe_await

logger = logging.getLogger("modinstall")

ModTypeTest = Callable[[list[Instruction]], "bool | Awaitable[bool]"]


@dataclass(frozen=True)
class ModType:
    id: str
    priority: int
    test: ModTypeTest = field(repr=False)


def matches_files(file_names: list[str]) -> ModTypeTest:
    """Build predicate matching mods that install any of the given file names."""
    lowered = {name.lower() for name in file_names}

    def test(instructions: list[Instruction]) -> bool:
        return any(PurePosixPath(instr.destination.replace("\\", "/")).name.lower() in lowered
                   for instr in instructions if isinstance(instr, CopyInstruction))
    return test


class ModTypeRegistry:
    """Per game table of mod types, read only while installs are running."""

    def __init__(self) -> None:
        self._types: dict[str, list[ModType]] = {}

    def register(self, game_id: str, type_id: str, priority: int, test: ModTypeTest) -> None:
        self._types.setdefault(game_id, []).append(ModType(type_id, priority, test))

    def get_types(self, game_id: str) -> list[ModType]:
        return list(self._types.get(game_id, []))

    async def determine_mod_type(self, game_id: str, instructions: list[Instruction]) -> str:
        """Return id of the highest priority type matching the instructions, empty if none do."""
        logger.info(f"Determining mod type for '{game_id}'")
        # stable sort, so types with same priority are tested in registration order
        for mod_type in sorted(self.get_types(game_id), key=lambda t: t.priority, reverse=True):
            if await maybe_await(mod_type.test(instructions)):
                logger.debug(f"Mod type detected: '{mod_type.id}'")
                return mod_type.id
        return ""
