import inspect
import logging
from dataclasses import dataclass, field
from typing import Any

from modinstall.install.collaborators import InstallFunc, SupportCheckFunc, SupportResult

logger = logging.getLogger("modinstall")


async def maybe_await(value: Any) -> Any:  # noqa: ANN401
    """Plugins can be written as plain or async functions, accept both."""
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass(frozen=True)
class ModInstaller:
    priority: int
    test_supported: SupportCheckFunc = field(repr=False)
    install: InstallFunc = field(repr=False)
    name: str = ""


@dataclass(frozen=True)
class SupportedInstaller:
    installer: ModInstaller
    required_files: list[str]


class InstallerRegistry:
    """Ordered collection of installer strategies.

    Lower priority number is queried first, installers with equal priority
    keep the order they were registered in.
    """

    def __init__(self) -> None:
        self._installers: list[ModInstaller] = []

    def __len__(self) -> int:
        return len(self._installers)

    @property
    def installers(self) -> tuple[ModInstaller, ...]:
        return tuple(self._installers)

    def register(self, priority: int, test_supported: SupportCheckFunc,
                 install: InstallFunc, name: str = "") -> ModInstaller:
        installer = ModInstaller(priority, test_supported, install,
                                 name or getattr(install, "__qualname__", "installer"))
        self._installers.append(installer)
        # list.sort is stable, ties keep insertion order
        self._installers.sort(key=lambda inst: inst.priority)
        logger.debug(f"Registered installer '{installer.name}' with priority {priority}")
        return installer

    async def select(self, file_list: list[str], game_id: str) -> SupportedInstaller | None:
        """Return first installer supporting the files, in strict priority order."""
        for installer in self._installers:
            result: SupportResult = await maybe_await(installer.test_supported(file_list, game_id))
            if result.supported:
                logger.info(f"Installer '{installer.name}' supports the archive")
                return SupportedInstaller(installer, list(result.required_files))
            logger.debug(f"Installer '{installer.name}' doesn't support the archive")
        return None
