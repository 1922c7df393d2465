import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from modinstall.helpers.errors import CANCELED_ERRORS, DownloadError
from modinstall.install.collaborators import (
    Decisions,
    DialogAction,
    DialogType,
    Downloader,
    LookupResult,
    MetadataLookup,
    Notifier,
    NotificationType,
    PackageStore,
    Reference,
    Rule,
)
from modinstall.localisation.service import tr

logger = logging.getLogger("modinstall")

REQUIRES_RULE = "requires"

# public install entry point of the manager, returns terminal InstallResult
InstallEntry = Callable[..., Awaitable[Any]]


@dataclass
class Dependency:
    reference: Reference
    lookup_results: list[LookupResult] = field(default_factory=list)
    download_id: str | None = None

    @property
    def source_uri(self) -> str | None:
        for result in self.lookup_results:
            if result.source_uri:
                return result.source_uri
        return None


def reference_matches(reference: Reference, record: Any) -> bool:  # noqa: ANN401
    """Every id given in the reference has to match the installed package."""
    checks = []
    if reference.install_id is not None:
        checks.append(reference.install_id == record.install_id)
    if reference.file_md5 is not None:
        checks.append(reference.file_md5 == record.attributes.get("file_md5"))
    if reference.logical_file_name is not None:
        checks.append(reference.logical_file_name == record.attributes.get("logical_file_name"))
    if reference.file_id is not None:
        checks.append(reference.file_id == record.file_id)
    return bool(checks) and all(checks)


class DependencyResolver:
    def __init__(self, store: PackageStore, metadata: MetadataLookup, downloader: Downloader,
                 decisions: Decisions, notifier: Notifier, install: InstallEntry) -> None:
        self.store = store
        self.metadata = metadata
        self.downloader = downloader
        self.decisions = decisions
        self.notifier = notifier
        self.install = install

    def is_satisfied(self, reference: Reference, game_id: str) -> bool:
        return any(reference_matches(reference, record)
                   for record in self.store.list_packages(game_id))

    async def gather_dependencies(self, rules: list[Rule], game_id: str) -> list[Dependency]:
        dependencies = []
        for rule in rules:
            if rule.type != REQUIRES_RULE:
                continue
            if self.is_satisfied(rule.reference, game_id):
                logger.debug(f"Dependency already installed: {rule.reference.describe()}")
                continue
            lookup_results = await self.metadata.lookup_reference(rule.reference, game_id)
            dependencies.append(Dependency(
                reference=rule.reference,
                lookup_results=lookup_results,
                download_id=self.downloader.find_download(rule.reference)))
        return dependencies

    async def install_dependencies(self, rules: list[Rule], game_id: str) -> None:
        """Check and install dependencies of a freshly installed mod, never raises."""
        notification_id = f"{game_id}_dependencies_activity"
        self.notifier.send_notification(NotificationType.ACTIVITY, tr("checking_dependencies"),
                                        notification_id=notification_id)
        try:
            dependencies = await self.gather_dependencies(rules, game_id)
        except Exception as ex:
            logger.exception("Failed to check dependencies")
            self.notifier.dismiss_notification(notification_id)
            self.notifier.send_notification(NotificationType.ERROR,
                                            tr("failed_to_check_dependencies"), str(ex))
            return
        self.notifier.dismiss_notification(notification_id)

        if not dependencies:
            return

        required_downloads = sum(1 for dep in dependencies if dep.download_id is None)
        try:
            result = await self.decisions.show_dialog(
                DialogType.QUESTION, tr("install_dependencies"),
                tr("unresolved_dependencies", count=str(len(dependencies)),
                   downloads=str(required_downloads)),
                [DialogAction.DONT_INSTALL, DialogAction.INSTALL])
        except CANCELED_ERRORS:
            return
        if result.action != DialogAction.INSTALL:
            logger.info("User chose not to install dependencies")
            return

        await self.do_install_dependencies(dependencies, game_id)

    async def do_install_dependencies(self, dependencies: list[Dependency], game_id: str) -> list[Any]:
        """Install all dependencies concurrently, each failure is reported on its own."""
        return await asyncio.gather(*[self.install_isolated(dep, game_id) for dep in dependencies])

    async def install_isolated(self, dependency: Dependency, game_id: str) -> Any | None:  # noqa: ANN401
        name = dependency.reference.describe()
        try:
            result = await self.install_dependency(dependency, game_id)
        except CANCELED_ERRORS:
            logger.info(f"Installing dependency '{name}' was canceled")
            return None
        except Exception as ex:
            logger.exception(f"Failed to install dependency '{name}'")
            self.notifier.send_notification(NotificationType.ERROR,
                                            tr("failed_to_install_dependency", name=name), str(ex))
            return None
        if result.failed:
            self.notifier.send_notification(NotificationType.ERROR,
                                            tr("failed_to_install_dependency", name=name),
                                            result.cause or "")
        return result

    async def install_dependency(self, dependency: Dependency, game_id: str) -> Any:  # noqa: ANN401
        download_id = dependency.download_id
        if download_id is None:
            source_uri = dependency.source_uri
            if source_uri is None:
                raise DownloadError(dependency.reference.describe(), "No download source known")
            download_id = await self.downloader.start_download([source_uri])

        download = self.downloader.get_download(download_id)
        if download is None:
            raise DownloadError(download_id, "Unknown download")
        return await self.install(download.local_path,
                                  download_id=download_id,
                                  download_game_id=download.game_id or game_id,
                                  info={"download": download_id},
                                  process_dependencies=False,
                                  enable=False)
