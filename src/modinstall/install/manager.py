"""Install orchestration.

Every install request goes through one queue consumed by a single worker,
so only one top level install runs at a time. A request walks through the
states of ``InstallState`` and always ends in one of the terminal ones,
with staging directory removed whatever the outcome is.
"""
import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from modinstall.game.data import CRITICAL_EXTRACTION_ERRORS, STAGING_SUFFIX
from modinstall.helpers.errors import (
    CANCELED_ERRORS,
    ArchiveBrokenError,
    InstallerReportedError,
    ManagerClosedError,
    NoSupportingInstallerError,
    ProcessCanceledError,
    RecoverableExtractionError,
    UserCanceledError,
)
from modinstall.helpers.file_ops import get_md5_async, list_tree_async, remove_path_async
from modinstall.helpers.parse_ops import archive_base_name
from modinstall.install.collaborators import (
    ArchiveExtractor,
    Decisions,
    DialogAction,
    DialogInput,
    DialogType,
    Downloader,
    LookupResult,
    MetadataLookup,
    Notifier,
    PackageStore,
    Rule,
)
from modinstall.install.context import InstallContext, InstallState
from modinstall.install.dependencies import DependencyResolver
from modinstall.install.executor import InstructionExecutor
from modinstall.install.instructions import InstallOutcome, parse_instructions
from modinstall.install.mod_types import ModTypeRegistry
from modinstall.install.naming import ConflictResolver
from modinstall.install.registry import InstallerRegistry, maybe_await
from modinstall.localisation.service import tr

logger = logging.getLogger("modinstall")

StateCallback = Callable[[InstallState], None]


class GameSession(Protocol):
    """What the manager needs to know about configured games."""

    @property
    def current_game_id(self) -> str | None: ...

    @property
    def profile_id(self) -> str: ...

    def is_discovered(self, game_id: str) -> bool: ...

    def game_name(self, game_id: str) -> str: ...

    def install_path(self, game_id: str) -> Path: ...


@dataclass(frozen=True)
class InstallResult:
    state: InstallState
    install_id: str | None = None
    cause: str | None = None
    checksum: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == InstallState.SUCCEEDED

    @property
    def canceled(self) -> bool:
        return self.state == InstallState.CANCELED

    @property
    def failed(self) -> bool:
        return self.state == InstallState.FAILED


@dataclass
class InstallRequest:
    archive_path: Path
    future: asyncio.Future = field(repr=False)
    download_id: str | None = None
    download_game_id: str | None = None
    info: dict[str, Any] = field(default_factory=dict)
    process_dependencies: bool = True
    enable: bool = False
    state: InstallState = InstallState.QUEUED
    game_id: str | None = None
    install_id: str | None = None
    staging_path: Path | None = None
    destination_path: Path | None = None
    archive_md5: str | None = None
    rules: list[Rule] = field(default_factory=list)

    def transition(self, state: InstallState) -> None:
        logger.info(f"[{self.archive_path.name}] {self.state} -> {state}")
        self.state = state

    def finish(self, state: InstallState, cause: str | None = None,
               checksum: str | None = None) -> InstallResult:
        self.transition(state)
        return InstallResult(state, self.install_id, cause, checksum)


class InstallManager:
    def __init__(self, session: GameSession, store: PackageStore, decisions: Decisions,
                 notifier: Notifier, extractor: ArchiveExtractor, metadata: MetadataLookup,
                 downloader: Downloader, registry: InstallerRegistry | None = None,
                 mod_types: ModTypeRegistry | None = None) -> None:
        self.session = session
        self.store = store
        self.decisions = decisions
        self.notifier = notifier
        self.extractor = extractor
        self.metadata = metadata
        self.downloader = downloader
        self.registry = registry if registry is not None else InstallerRegistry()
        self.mod_types = mod_types if mod_types is not None else ModTypeRegistry()

        self.executor = InstructionExecutor(notifier, self.prepare)
        self.naming = ConflictResolver(store, decisions)
        self.dependencies = DependencyResolver(store, metadata, downloader, decisions,
                                               notifier, self.install)

        self._queue: asyncio.Queue[InstallRequest] | None = None
        self._worker: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    def register_installer(self, priority: int, test_supported: Any,  # noqa: ANN401
                           install: Any, name: str = "") -> None:  # noqa: ANN401
        self.registry.register(priority, test_supported, install, name)

    # queue

    def submit(self, archive_path: str | Path, download_id: str | None = None,
               download_game_id: str | None = None, info: dict[str, Any] | None = None,
               process_dependencies: bool = True, enable: bool = False) -> asyncio.Future:
        """Queue install of the archive, returned future resolves with InstallResult."""
        if self._closed:
            raise ManagerClosedError("Install manager is closed")
        loop = asyncio.get_running_loop()
        request = InstallRequest(Path(archive_path), loop.create_future(),
                                 download_id=download_id,
                                 download_game_id=download_game_id,
                                 info=dict(info or {}),
                                 process_dependencies=process_dependencies,
                                 enable=enable)
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._work(), name="install-worker")
        self._queue.put_nowait(request)
        logger.info(f"Install of '{request.archive_path}' queued")
        return request.future

    async def install(self, archive_path: str | Path, download_id: str | None = None,
                      download_game_id: str | None = None, info: dict[str, Any] | None = None,
                      process_dependencies: bool = True, enable: bool = False) -> InstallResult:
        return await self.submit(archive_path, download_id, download_game_id, info,
                                 process_dependencies, enable)

    async def wait_idle(self) -> None:
        """Wait until queued installs and dependency installs spawned by them are done."""
        while True:
            if self._queue is not None:
                await self._queue.join()
            if not self._background:
                return
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
        if self._queue is not None:
            while not self._queue.empty():
                request = self._queue.get_nowait()
                if not request.future.done():
                    request.future.cancel()
                self._queue.task_done()
        logger.info("Install manager closed")

    async def _work(self) -> None:
        while True:
            request = await self._queue.get()
            try:
                if request.future.done():
                    logger.info(f"Install of '{request.archive_path}' was abandoned while queued")
                    continue
                await self._handle(request)
            finally:
                self._queue.task_done()

    async def _handle(self, request: InstallRequest) -> None:
        task = asyncio.create_task(self._process(request))

        def cancel_abandoned(future: asyncio.Future) -> None:
            if future.cancelled():
                task.cancel()

        request.future.add_done_callback(cancel_abandoned)
        try:
            result = await task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                request.future.cancel()
                raise
            result = request.finish(InstallState.CANCELED, cause="install was aborted")
        except Exception as ex:
            logger.exception(f"Unexpected error installing '{request.archive_path}'")
            result = request.finish(InstallState.FAILED, cause=str(ex))
        if not request.future.done():
            request.future.set_result(result)

    # pipeline

    async def _process(self, request: InstallRequest) -> InstallResult:
        request.transition(InstallState.RESOLVING_GAME)
        try:
            request.game_id = await self.query_game_id(request.download_game_id)
        except CANCELED_ERRORS as ex:
            return request.finish(InstallState.CANCELED, cause=str(ex))

        context = InstallContext(request.game_id, self.store, self.notifier,
                                 self.session.profile_id)
        context.start_indicator(archive_base_name(request.archive_path))
        try:
            return await self._run_pipeline(request, context)
        finally:
            context.stop_indicator()

    async def _run_pipeline(self, request: InstallRequest, context: InstallContext) -> InstallResult:
        try:
            await self.resolve_identity(request, context)
            outcome = await self.prepare(request.archive_path, request.staging_path,
                                         request.game_id, request.transition)

            request.transition(InstallState.APPLYING_INSTRUCTIONS)
            if outcome.instructions:
                record = self.store.get(request.game_id, request.install_id)
                if not record.type:
                    mod_type = await self.mod_types.determine_mod_type(request.game_id,
                                                                       outcome.instructions)
                    if mod_type:
                        context.set_mod_type(mod_type)
            await self.executor.apply(outcome, request.archive_path, request.staging_path,
                                      request.destination_path, request.game_id, context)

            request.transition(InstallState.FINALIZING)
            context.finish_install(succeeded=True)
            if request.enable:
                self.store.set_enabled(self.session.profile_id, request.game_id,
                                       request.install_id, True)
            if request.process_dependencies and request.rules:
                self._start_dependencies(request.rules, request.game_id)
            return request.finish(InstallState.SUCCEEDED)
        except CANCELED_ERRORS as ex:
            logger.info(f"Install of '{request.archive_path.name}' canceled: {ex}")
            await self.rollback(request, context)
            return request.finish(InstallState.CANCELED, cause=str(ex))
        except asyncio.CancelledError:
            await self.rollback(request, context)
            raise
        except Exception as ex:
            logger.exception(f"Install of '{request.archive_path.name}' failed")
            await self.rollback(request, context)
            checksum = await self.archive_checksum(request)
            if not isinstance(ex, InstallerReportedError):
                context.report_error(tr("installation_failed", name=request.archive_path.name),
                                     str(ex),
                                     allow_report=not isinstance(ex, ArchiveBrokenError),
                                     checksum=checksum)
            return request.finish(InstallState.FAILED, cause=str(ex), checksum=checksum)
        finally:
            if request.staging_path is not None:
                await remove_path_async(request.staging_path)

    async def query_game_id(self, download_game_id: str | None) -> str:
        """Pick the game to install for, asking user when download is for another game."""
        current_game = self.session.current_game_id
        if current_game is None:
            if download_game_id is None or not self.session.is_discovered(download_game_id):
                raise ProcessCanceledError("No game selected to install for")
            return download_game_id

        if download_game_id is None or download_game_id == current_game:
            return current_game

        install_for_current = tr("install_for", game=self.session.game_name(current_game))
        if not self.session.is_discovered(download_game_id):
            result = await self.decisions.show_dialog(
                DialogType.QUESTION, tr("game_not_installed"),
                tr("game_not_installed_details", game=download_game_id),
                [DialogAction.CANCEL, install_for_current])
            if result.action == install_for_current:
                return current_game
            raise UserCanceledError

        install_for_download = tr("install_for", game=self.session.game_name(download_game_id))
        result = await self.decisions.show_dialog(
            DialogType.QUESTION, tr("different_game"),
            tr("different_game_details", game=self.session.game_name(download_game_id),
               current=self.session.game_name(current_game)),
            [DialogAction.CANCEL, install_for_current, install_for_download])
        if result.action == install_for_current:
            return current_game
        if result.action == install_for_download:
            return download_game_id
        raise UserCanceledError

    async def lookup_metadata(self, request: InstallRequest) -> LookupResult | None:
        try:
            results = await self.metadata.lookup(request.archive_path, request.game_id)
        except Exception:
            # install works without metadata, it just can't track versions and dependencies
            logger.exception(f"Metadata lookup failed for '{request.archive_path}'")
            return None
        return results[0] if results else None

    async def resolve_identity(self, request: InstallRequest, context: InstallContext) -> None:
        """Settle the install id and reserve it with a provisional package record."""
        meta = await self.lookup_metadata(request)
        info = dict(request.info)
        file_id = None
        if meta is not None:
            info.setdefault("meta", meta.model_dump(exclude_none=True, exclude={"rules"}))
            if meta.custom_file_name:
                info.setdefault("custom_file_name", meta.custom_file_name)
            file_id = meta.file_id
            request.rules = list(meta.rules)

        install_id = self.naming.derive_install_id(request.archive_path, info)
        resolution = await self.naming.resolve(request.game_id, install_id, file_id,
                                               self.session.profile_id, request.enable)
        request.install_id = resolution.install_id
        request.enable = resolution.enable

        destination = self.session.install_path(request.game_id) / request.install_id
        request.staging_path = Path(f"{destination}{STAGING_SUFFIX}")

        attributes: dict[str, Any] = {
            "name": archive_base_name(request.archive_path),
            "install_time": datetime.now().isoformat(timespec="seconds"),
        }
        if request.archive_path.is_file():
            request.archive_md5 = await get_md5_async(request.archive_path)
            attributes["file_md5"] = request.archive_md5
        if meta is not None:
            for key in ("file_id", "logical_file_name", "file_version", "source_uri"):
                value = getattr(meta, key)
                if value is not None:
                    attributes[key] = value
        if request.download_id is not None:
            attributes["download_id"] = request.download_id

        context.start_install(request.install_id, request.archive_path,
                              request.download_id, attributes)
        # only from here on the destination is ours to remove on failure
        request.destination_path = destination
        context.set_install_path(destination)

    async def prepare(self, archive_path: Path, staging_path: Path, game_id: str,
                      on_state: StateCallback | None = None) -> InstallOutcome:
        """Extract archive, pick installer for its content and run it."""
        def notify(state: InstallState) -> None:
            if on_state is not None:
                on_state(state)

        notify(InstallState.EXTRACTING)
        # leftover of an interrupted install would mix into the file list
        await remove_path_async(staging_path)
        await self.extract(archive_path, staging_path)

        notify(InstallState.SELECTING_INSTALLER)
        file_list = await list_tree_async(staging_path)
        supported = await self.registry.select(file_list, game_id)
        if supported is None:
            raise NoSupportingInstallerError(archive_path)

        notify(InstallState.INSTALLING)
        logger.info(f"Installing '{archive_path.name}' with '{supported.installer.name}'")
        outcome = await maybe_await(supported.installer.install(
            file_list, staging_path, game_id, self._progress))
        return self.normalize_outcome(outcome)

    @staticmethod
    def normalize_outcome(outcome: Any) -> InstallOutcome:  # noqa: ANN401
        """Accept bare lists and dict instructions from installers along with InstallOutcome."""
        if outcome is None:
            return InstallOutcome.reported_failure()
        if isinstance(outcome, list):
            return InstallOutcome(parse_instructions(outcome))
        if outcome.instructions is None:
            return outcome
        return InstallOutcome(parse_instructions(outcome.instructions))

    @staticmethod
    def _progress(percent: float) -> None:
        logger.debug(f"Installer progress: {percent:.0f}%")

    async def extract(self, archive_path: Path, staging_path: Path) -> None:
        try:
            await self._extract_checked(archive_path, staging_path)
        except RecoverableExtractionError as ex:
            logger.warning(str(ex))
            result = await self.decisions.show_dialog(
                DialogType.ERROR, tr("archive_damaged"),
                tr("archive_damaged_details", errors="\n".join(ex.errors)),
                [DialogAction.CANCEL, DialogAction.CONTINUE])
            if result.action != DialogAction.CONTINUE:
                raise UserCanceledError from ex
            logger.info("User chose to continue with partially extracted archive")

    async def _extract_checked(self, archive_path: Path, staging_path: Path) -> None:
        async def ask_password() -> str:
            result = await self.decisions.show_dialog(
                DialogType.INFO, tr("password_required"),
                tr("password_protected", name=archive_path.name),
                [DialogAction.CANCEL, DialogAction.CONTINUE],
                [DialogInput(id="password", label=tr("password"), password=True)])
            if result.action != DialogAction.CONTINUE:
                raise UserCanceledError
            return result.input.get("password", "")

        result = await self.extractor.extract_full(archive_path, staging_path, ask_password)
        if result.code == 0:
            return
        critical = [error for error in result.errors
                    if any(marker in error.lower() for marker in CRITICAL_EXTRACTION_ERRORS)]
        if critical:
            raise ArchiveBrokenError(archive_path, "\n".join(critical))
        raise RecoverableExtractionError(archive_path, result.errors)

    async def rollback(self, request: InstallRequest, context: InstallContext) -> None:
        if request.destination_path is not None:
            await remove_path_async(request.destination_path)
        context.finish_install(succeeded=False)

    async def archive_checksum(self, request: InstallRequest) -> str | None:
        if request.archive_md5 is not None:
            return request.archive_md5
        if not request.archive_path.is_file():
            return None
        try:
            return await get_md5_async(request.archive_path)
        except OSError:
            logger.exception(f"Couldn't hash '{request.archive_path}'")
            return None

    def _start_dependencies(self, rules: list[Rule], game_id: str) -> None:
        # not awaited, dependencies go through the same queue this install is holding
        task = asyncio.create_task(self.dependencies.install_dependencies(rules, game_id),
                                   name=f"dependencies-{game_id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
