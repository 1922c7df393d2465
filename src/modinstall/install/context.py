import logging
from enum import StrEnum
from pathlib import Path
from typing import Any

from modinstall.install.collaborators import Notifier, NotificationType, PackageStore
from modinstall.localisation.service import tr

logger = logging.getLogger("modinstall")


class InstallState(StrEnum):
    QUEUED = "queued"
    RESOLVING_GAME = "resolving_game"
    EXTRACTING = "extracting"
    SELECTING_INSTALLER = "selecting_installer"
    INSTALLING = "installing"
    APPLYING_INSTRUCTIONS = "applying_instructions"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"



class LoggingNotifier:
    """Notifier that only writes to the log, used when no UI is attached."""

    def __init__(self) -> None:
        self.notifications: dict[str, tuple[NotificationType, str, str]] = {}
        self._counter = 0

    def send_notification(self, notification_type: NotificationType, title: str,
                          message: str = "", notification_id: str | None = None) -> None:
        if notification_id is None:
            self._counter += 1
            notification_id = f"notification_{self._counter}"
        self.notifications[notification_id] = (notification_type, title, message)
        match notification_type:
            case NotificationType.ERROR:
                logger.error(f"{title}: {message}")
            case NotificationType.WARNING:
                logger.warning(f"{title}: {message}")
            case _:
                logger.info(f"{title}: {message}")

    def dismiss_notification(self, notification_id: str) -> None:
        self.notifications.pop(notification_id, None)

    def report_error(self, title: str, message: str, allow_report: bool = True,
                     checksum: str | None = None) -> None:
        suffix = f" (md5: {checksum})" if checksum else ""
        logger.error(f"{title}: {message}{suffix}")


class InstallContext:
    """Bookkeeping of a single install: progress indicator, package record and user feedback."""

    def __init__(self, game_id: str, store: PackageStore, notifier: Notifier,
                 profile_id: str) -> None:
        self.game_id = game_id
        self.store = store
        self.notifier = notifier
        self.profile_id = profile_id
        self.install_id: str | None = None
        self.indicator_id: str | None = None

    def start_indicator(self, name: str) -> None:
        self.indicator_id = f"install_{self.game_id}_{name}"
        self.notifier.send_notification(NotificationType.ACTIVITY, tr("installing_mod", name=name),
                                        notification_id=self.indicator_id)

    def stop_indicator(self) -> None:
        if self.indicator_id is not None:
            self.notifier.dismiss_notification(self.indicator_id)
            self.indicator_id = None

    def start_install(self, install_id: str, archive_path: Path,
                      download_id: str | None, attributes: dict[str, Any]) -> None:
        """Reserve install id by creating provisional package record."""
        self.install_id = install_id
        self.store.create(self.game_id, install_id,
                          archive_path=str(archive_path),
                          download_id=download_id,
                          attributes=attributes)

    def set_install_path(self, path: Path) -> None:
        self.store.set_install_path(self.game_id, self.install_id, path)

    def set_mod_type(self, mod_type: str) -> None:
        self.store.set_type(self.game_id, self.install_id, mod_type)

    def set_attribute(self, key: str, value: Any) -> None:  # noqa: ANN401
        self.store.set_attribute(self.game_id, self.install_id, key, value)

    def finish_install(self, succeeded: bool) -> None:
        if self.install_id is None:
            return
        if succeeded:
            self.store.mark_installed(self.game_id, self.install_id)
            self.notifier.send_notification(NotificationType.SUCCESS,
                                            tr("mod_installed", name=self.install_id))
        else:
            # provisional record isn't worth keeping once install didn't finish
            self.store.remove(self.game_id, self.install_id)

    def report_error(self, title: str, message: str, allow_report: bool = True,
                     checksum: str | None = None) -> None:
        self.notifier.report_error(title, message, allow_report, checksum)
