from pathlib import Path

from modinstall.localisation.service import tr


class FileLoggingSetupError(Exception):
    def __init__(self, path: str, message: str = "Couldn't setup file logging") -> None:
        self.path = path
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.message}: '{self.path}'"


class ConfigLoadingError(Exception):
    def __init__(self, path: str | Path, message: str = "Couldn't load config") -> None:
        self.path = path
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.message}: '{self.path}'"


class UserCanceledError(Exception):
    def __init__(self, message: str = "canceled by user") -> None:
        self.message = message
        super().__init__(self.message)


class ProcessCanceledError(Exception):
    """Internal abort that should be treated the same way as a user cancellation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class ArchiveBrokenError(Exception):
    def __init__(self, archive_path: str | Path, details: str = "") -> None:
        self.archive_path = archive_path
        self.details = details
        super().__init__(str(self.archive_path))

    def __str__(self) -> str:
        return tr("archive_damaged_redownload", name=Path(self.archive_path).name)


class RecoverableExtractionError(Exception):
    def __init__(self, archive_path: str | Path, errors: list[str]) -> None:
        self.archive_path = archive_path
        self.errors = errors
        super().__init__(str(self.archive_path))

    def __str__(self) -> str:
        return f"Errors extracting '{Path(self.archive_path).name}': " + "; ".join(self.errors)


class NoSupportingInstallerError(Exception):
    def __init__(self, archive_path: str | Path) -> None:
        self.archive_path = archive_path
        super().__init__(str(self.archive_path))

    def __str__(self) -> str:
        return tr("no_installer_supporting_file", name=Path(self.archive_path).name)


class EmptyInstructionsError(Exception):
    def __str__(self) -> str:
        return tr("installer_returned_no_instructions")


class InstallerReportedError(Exception):
    """Installer produced explicit error instructions, messages were already shown to the user."""

    def __init__(self, messages: list[str]) -> None:
        self.messages = messages
        super().__init__("\n".join(self.messages))


class UnsafeDestinationError(Exception):
    def __init__(self, destination: str | Path) -> None:
        self.destination = destination
        super().__init__(str(self.destination))

    def __str__(self) -> str:
        return f"Installer tried to write outside of the mod directory: '{self.destination}'"


class DownloadError(Exception):
    def __init__(self, source: str, message: str = "Download failed") -> None:
        self.source = source
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.message}: '{self.source}'"


class ManagerClosedError(Exception):
    pass


CANCELED_ERRORS = (UserCanceledError, ProcessCanceledError)
