"""Contracts between the install core and the rest of the application."""
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from modinstall.install.instructions import InstallOutcome

ProgressCallback = Callable[[float], None]
PasswordCallback = Callable[[], Awaitable[str]]


@dataclass(frozen=True)
class SupportResult:
    supported: bool
    required_files: list[str] = field(default_factory=list)


SupportCheckFunc = Callable[[list[str], str], "SupportResult | Awaitable[SupportResult]"]
InstallFunc = Callable[[list[str], Path, str, ProgressCallback],
                       "InstallOutcome | Awaitable[InstallOutcome]"]


class DialogAction(StrEnum):
    CANCEL = "Cancel"
    CONTINUE = "Continue"
    RENAME = "Rename"
    REPLACE = "Replace"
    INSTALL = "Install"
    DONT_INSTALL = "Don't install"


class DialogType(StrEnum):
    INFO = "info"
    QUESTION = "question"
    ERROR = "error"


@dataclass(frozen=True)
class DialogInput:
    id: str
    label: str
    value: str = ""
    password: bool = False


@dataclass
class DialogResult:
    action: str
    input: dict[str, str] = field(default_factory=dict)


class Decisions(Protocol):
    async def show_dialog(self, dialog_type: DialogType, title: str, message: str,
                          choices: list[str],
                          inputs: list[DialogInput] | None = None) -> DialogResult:
        """Ask user to pick one of the labeled choices.

        May raise UserCanceledError instead of returning a choice.
        """
        ...


@dataclass(frozen=True)
class ExtractionResult:
    code: int
    errors: list[str] = field(default_factory=list)


class ArchiveExtractor(Protocol):
    async def extract_full(self, archive_path: Path, destination: Path,
                           password_callback: PasswordCallback) -> ExtractionResult: ...


class Reference(BaseModel):
    """Identifies a package by any of the known ids, all given ids have to match."""
    model_config = ConfigDict(frozen=True)

    install_id: str | None = None
    file_md5: str | None = None
    logical_file_name: str | None = None
    file_id: int | None = None

    def describe(self) -> str:
        return (self.logical_file_name or self.install_id or self.file_md5
                or (str(self.file_id) if self.file_id is not None else "unknown"))


class Rule(BaseModel):
    type: str
    reference: Reference


class LookupResult(BaseModel):
    file_id: int | None = None
    file_md5: str | None = None
    logical_file_name: str | None = None
    file_version: str | None = None
    custom_file_name: str | None = None
    source_uri: str | None = None
    rules: list[Rule] = Field(default_factory=list)


class MetadataLookup(Protocol):
    async def lookup(self, archive_path: Path, game_id: str) -> list[LookupResult]: ...

    async def lookup_reference(self, reference: Reference, game_id: str) -> list[LookupResult]: ...


@dataclass(frozen=True)
class DownloadInfo:
    download_id: str
    local_path: Path
    game_id: str | None = None


class Downloader(Protocol):
    async def start_download(self, uris: list[str]) -> str: ...

    def get_download(self, download_id: str) -> DownloadInfo | None: ...

    def find_download(self, reference: Reference) -> str | None: ...


class PackageStore(Protocol):
    def exists(self, game_id: str, install_id: str) -> bool: ...

    def get(self, game_id: str, install_id: str) -> Any: ...  # noqa: ANN401

    def list_packages(self, game_id: str) -> list[Any]: ...

    def create(self, game_id: str, install_id: str, **kwargs: Any) -> Any: ...  # noqa: ANN401

    def remove(self, game_id: str, install_id: str) -> None: ...

    def set_attribute(self, game_id: str, install_id: str, key: str, value: Any) -> None: ...  # noqa: ANN401

    def set_type(self, game_id: str, install_id: str, mod_type: str) -> None: ...

    def set_install_path(self, game_id: str, install_id: str, path: Path) -> None: ...

    def set_enabled(self, profile_id: str, game_id: str, install_id: str, enabled: bool) -> None: ...

    def is_enabled(self, profile_id: str, game_id: str, install_id: str) -> bool: ...

    def mark_installed(self, game_id: str, install_id: str) -> None: ...


class NotificationType(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    ACTIVITY = "activity"
    SUCCESS = "success"


class Notifier(Protocol):
    def send_notification(self, notification_type: NotificationType, title: str,
                          message: str = "", notification_id: str | None = None) -> None: ...

    def dismiss_notification(self, notification_id: str) -> None: ...

    def report_error(self, title: str, message: str, allow_report: bool = True,
                     checksum: str | None = None) -> None: ...
