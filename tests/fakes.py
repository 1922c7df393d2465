"""Collaborator doubles and archive builders shared by the test modules."""
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from modinstall.game.environment import Environment, GameEntry, ManagerConfig
from modinstall.helpers.errors import UserCanceledError
from modinstall.install.collaborators import (
    DialogInput,
    DialogResult,
    DownloadInfo,
    ExtractionResult,
    LookupResult,
    Reference,
)
from modinstall.install.context import LoggingNotifier

GAME_ID = "skyrim"
GAME_NAME = "Skyrim"


def make_zip(path: Path, files: dict[str, str | bytes], dirs: list[str] | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for directory in dirs or []:
            archive.writestr(directory.rstrip("/") + "/", "")
        for name, content in files.items():
            archive.writestr(name, content)
    return path


def make_environment(mods_path: Path, **games: str) -> Environment:
    config = ManagerConfig(current_game=GAME_ID,
                           games={GAME_ID: GameEntry(name=GAME_NAME, mods_path=str(mods_path))})
    for game_id, game_mods_path in games.items():
        config.games[game_id] = GameEntry(name=game_id.capitalize(), mods_path=game_mods_path)
    return Environment(config)


@dataclass
class Dialog:
    title: str
    message: str
    choices: list[str]
    inputs: list[DialogInput] = field(default_factory=list)


class ScriptedDecisions:
    """Answers dialogs in the given order, cancels when out of answers."""

    def __init__(self, *answers: str | DialogResult) -> None:
        self.answers = list(answers)
        self.dialogs: list[Dialog] = []

    async def show_dialog(self, dialog_type, title, message, choices, inputs=None):
        self.dialogs.append(Dialog(title, message, list(choices), list(inputs or [])))
        if not self.answers:
            raise UserCanceledError
        answer = self.answers.pop(0)
        if isinstance(answer, str):
            answer = DialogResult(answer)
        return answer


@dataclass
class Report:
    title: str
    message: str
    allow_report: bool
    checksum: str | None


class RecordingNotifier(LoggingNotifier):
    def __init__(self) -> None:
        super().__init__()
        self.sent = []
        self.reports: list[Report] = []

    def send_notification(self, notification_type, title, message="", notification_id=None):
        super().send_notification(notification_type, title, message, notification_id)
        self.sent.append((notification_type, title, message))

    def report_error(self, title, message, allow_report=True, checksum=None):
        super().report_error(title, message, allow_report, checksum)
        self.reports.append(Report(title, message, allow_report, checksum))

    def of_type(self, notification_type):
        return [entry for entry in self.sent if entry[0] == notification_type]


class StaticMetadata:
    def __init__(self, by_archive: dict[str, list[LookupResult]] | None = None,
                 by_reference: dict[str, list[LookupResult]] | None = None) -> None:
        self.by_archive = by_archive or {}
        self.by_reference = by_reference or {}

    async def lookup(self, archive_path, game_id):
        return list(self.by_archive.get(Path(archive_path).name, []))

    async def lookup_reference(self, reference: Reference, game_id):
        return list(self.by_reference.get(reference.describe(), []))


class FakeDownloader:
    """Knows downloads by id, references are matched by their description.

    Only uris listed in `remote` can be downloaded, they resolve to local archives.
    """

    def __init__(self, downloads: dict[str, Path] | None = None,
                 known: dict[str, str] | None = None,
                 remote: dict[str, Path] | None = None) -> None:
        self.downloads = downloads or {}
        self.known = known or {}
        self.remote = remote or {}
        self.started = []

    async def start_download(self, uris):
        self.started.append(list(uris))
        for uri in uris:
            if uri in self.remote:
                download_id = self.remote[uri].name
                self.downloads[download_id] = self.remote[uri]
                return download_id
        raise OSError("network is not available in tests")

    def get_download(self, download_id):
        path = self.downloads.get(download_id)
        if path is None:
            return None
        return DownloadInfo(download_id, path)

    def find_download(self, reference):
        return self.known.get(reference.describe())


class FakeExtractor:
    """Writes given files into staging and returns the configured result."""

    def __init__(self, files: dict[str, str], result: ExtractionResult | None = None,
                 ask_password: bool = False) -> None:
        self.files = files
        self.result = result or ExtractionResult(0)
        self.ask_password = ask_password
        self.passwords = []

    async def extract_full(self, archive_path, destination, password_callback):
        if self.ask_password:
            self.passwords.append(await password_callback())
        for name, content in self.files.items():
            target = Path(destination, name)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return self.result
