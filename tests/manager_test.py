import asyncio
import hashlib
import tempfile
import unittest
from pathlib import Path

from fakes import (
    GAME_ID,
    FakeDownloader,
    FakeExtractor,
    RecordingNotifier,
    ScriptedDecisions,
    StaticMetadata,
    make_environment,
    make_zip,
)

from modinstall.game.store import PackageState, YamlPackageStore
from modinstall.install.collaborators import (
    DialogAction,
    DialogResult,
    ExtractionResult,
    LookupResult,
    NotificationType,
    Reference,
    Rule,
    SupportResult,
)
from modinstall.install.context import InstallState
from modinstall.install.extraction import PyArchiveExtractor
from modinstall.install.instructions import (
    CopyInstruction,
    InstallOutcome,
    SubmoduleInstruction,
)
from modinstall.install.manager import InstallManager
from modinstall.localisation.service import set_current_lang, tr

set_current_lang("eng")


def always_supported(file_list, game_id):
    return SupportResult(True)


def copy_everything(file_list, staging_path, game_id, progress):
    return InstallOutcome([CopyInstruction(source=entry, destination=entry)
                           for entry in file_list if not entry.endswith("/")])


class ManagerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.mods = self.root / "mods"
        self.downloads = self.root / "downloads"
        self.store = YamlPackageStore()
        self.notifier = RecordingNotifier()
        self.decisions = ScriptedDecisions()
        self.metadata = StaticMetadata()
        self.downloader = FakeDownloader()
        self.extractor = PyArchiveExtractor()
        self.environment = make_environment(self.mods)
        self.manager = None

    async def asyncTearDown(self):
        if self.manager is not None:
            await self.manager.close()

    def tearDown(self):
        self.tmp.cleanup()

    def make_manager(self, install=copy_everything, test_supported=always_supported):
        self.manager = InstallManager(self.environment, self.store, self.decisions,
                                      self.notifier, self.extractor, self.metadata,
                                      self.downloader)
        self.manager.register_installer(10, test_supported, install, "test")
        return self.manager

    def assert_no_staging_left(self):
        if self.mods.exists():
            self.assertEqual([path.name for path in self.mods.iterdir()
                              if path.name.endswith(".installing")], [])


class TestInstallPipeline(ManagerTestCase):
    async def test_end_to_end_install(self):
        def install(file_list, staging_path, game_id, progress):
            return InstallOutcome([CopyInstruction(source="readme.txt", destination="readme.txt"),
                                   CopyInstruction(source="data/foo.esp", destination="foo.esp")])

        archive = make_zip(self.downloads / "CoolMod.zip",
                           {"readme.txt": "read me", "data/foo.esp": "plugin"})
        result = await self.make_manager(install).install(archive)

        self.assertEqual(result.state, InstallState.SUCCEEDED)
        self.assertEqual(result.install_id, "CoolMod")
        destination = self.mods / "CoolMod"
        self.assertEqual((destination / "readme.txt").read_text(), "read me")
        self.assertEqual((destination / "foo.esp").read_text(), "plugin")
        self.assert_no_staging_left()

        record = self.store.get(GAME_ID, "CoolMod")
        self.assertEqual(record.state, PackageState.INSTALLED)
        self.assertEqual(Path(record.install_path), destination)
        self.assertEqual(record.attributes["file_md5"],
                         hashlib.md5(archive.read_bytes()).hexdigest())  # noqa: S324
        self.assertFalse(self.store.is_enabled("default", GAME_ID, "CoolMod"))
        self.assertFalse(self.notifier.reports)

    async def test_enable_after_install(self):
        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})
        result = await self.make_manager().install(archive, enable=True)
        self.assertTrue(result.succeeded)
        self.assertTrue(self.store.is_enabled("default", GAME_ID, "CoolMod"))

    async def test_installer_reporting_failure_is_canceled_once(self):
        def install(file_list, staging_path, game_id, progress):
            return InstallOutcome.reported_failure()

        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})
        result = await self.make_manager(install).install(archive)

        self.assertEqual(result.state, InstallState.CANCELED)
        self.assertFalse(self.notifier.reports)
        self.assertFalse(self.notifier.of_type(NotificationType.ERROR))
        self.assertFalse(self.store.exists(GAME_ID, "CoolMod"))
        self.assertFalse((self.mods / "CoolMod").exists())
        self.assert_no_staging_left()

    async def test_empty_instructions_fail_with_report(self):
        def install(file_list, staging_path, game_id, progress):
            return InstallOutcome([])

        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})
        result = await self.make_manager(install).install(archive)

        self.assertTrue(result.failed)
        self.assertEqual(len(self.notifier.reports), 1)
        self.assertEqual(self.notifier.reports[0].checksum, result.checksum)
        self.assertIsNotNone(result.checksum)
        self.assertFalse(self.store.exists(GAME_ID, "CoolMod"))
        self.assert_no_staging_left()

    async def test_installer_error_instruction_fails_without_report(self):
        def install(file_list, staging_path, game_id, progress):
            return [{"type": "error", "message": "needs script extender"}]

        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})
        result = await self.make_manager(install).install(archive)

        self.assertTrue(result.failed)
        self.assertIn("needs script extender", result.cause)
        self.assertFalse(self.notifier.reports)
        self.assertEqual(len(self.notifier.of_type(NotificationType.ERROR)), 1)

    async def test_no_supporting_installer(self):
        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})
        manager = self.make_manager(test_supported=lambda files, game: SupportResult(False))
        result = await manager.install(archive)

        self.assertTrue(result.failed)
        self.assertEqual(result.cause, tr("no_installer_supporting_file", name="CoolMod.zip"))
        self.assertFalse((self.mods / "CoolMod").exists())
        self.assert_no_staging_left()

    async def test_broken_archive_fails_without_prompt(self):
        archive = self.downloads / "Broken.zip"
        archive.parent.mkdir(parents=True)
        archive.write_bytes(b"this is not an archive")
        result = await self.make_manager().install(archive)

        self.assertTrue(result.failed)
        self.assertEqual(result.checksum, hashlib.md5(archive.read_bytes()).hexdigest())  # noqa: S324
        self.assertFalse(self.decisions.dialogs)
        self.assertEqual(len(self.notifier.reports), 1)
        self.assertFalse(self.notifier.reports[0].allow_report)
        self.assertFalse(self.store.exists(GAME_ID, "Broken"))
        self.assert_no_staging_left()

    async def test_archive_escaping_staging_fails(self):
        archive = make_zip(self.downloads / "Evil.zip",
                           {"readme.txt": "read me", "../../outside.txt": "gotcha"})
        result = await self.make_manager().install(archive)

        self.assertTrue(result.failed)
        self.assertFalse(self.decisions.dialogs)
        self.assertFalse((self.root / "outside.txt").exists())
        self.assertFalse(self.store.exists(GAME_ID, "Evil"))
        self.assertFalse((self.mods / "Evil").exists())
        self.assert_no_staging_left()

    async def test_recoverable_extraction_error_continue(self):
        self.extractor = FakeExtractor({"readme.txt": "read me"},
                                       ExtractionResult(1, ["WARNING: headers error"]))
        self.decisions.answers = [DialogAction.CONTINUE]
        result = await self.make_manager().install(self.downloads / "Partial.zip")

        self.assertTrue(result.succeeded)
        self.assertEqual(self.decisions.dialogs[0].title, tr("archive_damaged"))
        self.assertTrue((self.mods / "Partial" / "readme.txt").is_file())

    async def test_recoverable_extraction_error_abort(self):
        self.extractor = FakeExtractor({"readme.txt": "read me"},
                                       ExtractionResult(1, ["WARNING: headers error"]))
        self.decisions.answers = [DialogAction.CANCEL]
        result = await self.make_manager().install(self.downloads / "Partial.zip")

        self.assertTrue(result.canceled)
        self.assertFalse((self.mods / "Partial").exists())
        self.assert_no_staging_left()

    async def test_password_is_asked_on_demand(self):
        self.extractor = FakeExtractor({"readme.txt": "read me"}, ask_password=True)
        self.decisions.answers = [DialogResult(DialogAction.CONTINUE, {"password": "secret"})]
        result = await self.make_manager().install(self.downloads / "Locked.zip")

        self.assertTrue(result.succeeded)
        self.assertEqual(self.extractor.passwords, ["secret"])
        self.assertTrue(self.decisions.dialogs[0].inputs[0].password)

    async def test_canceled_rename_keeps_existing_mod(self):
        existing = self.mods / "CoolMod"
        existing.mkdir(parents=True)
        (existing / "old.txt").write_text("old")
        self.store.create(GAME_ID, "CoolMod", install_path=str(existing))
        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})

        result = await self.make_manager().install(archive)

        self.assertTrue(result.canceled)
        self.assertTrue((existing / "old.txt").is_file())
        self.assertTrue(self.store.exists(GAME_ID, "CoolMod"))

    async def test_metadata_names_the_mod(self):
        self.metadata.by_archive["cm_v12.zip"] = [
            LookupResult(file_id=5, logical_file_name="Cool Mod", file_version="1.2")]
        archive = make_zip(self.downloads / "cm_v12.zip", {"readme.txt": "read me"})
        result = await self.make_manager().install(archive)

        self.assertEqual(result.install_id, "Cool Mod-1.2")
        record = self.store.get(GAME_ID, "Cool Mod-1.2")
        self.assertEqual(record.file_id, 5)
        self.assertEqual(record.attributes["logical_file_name"], "Cool Mod")

    async def test_submodule_installs_into_same_destination(self):
        inner = make_zip(self.root / "build" / "inner.zip", {"plugin.esp": "inner plugin"})

        def install(file_list, staging_path, game_id, progress):
            if "inner.zip" in file_list:
                return InstallOutcome([
                    CopyInstruction(source="readme.txt", destination="readme.txt"),
                    SubmoduleInstruction(path="inner.zip", key="extra", submodule_type="addon")])
            return copy_everything(file_list, staging_path, game_id, progress)

        archive = make_zip(self.downloads / "Outer.zip",
                           {"readme.txt": "outer", "inner.zip": inner.read_bytes()})
        result = await self.make_manager(install).install(archive)

        self.assertTrue(result.succeeded)
        destination = self.mods / "Outer"
        self.assertEqual((destination / "readme.txt").read_text(), "outer")
        self.assertEqual((destination / "plugin.esp").read_text(), "inner plugin")
        self.assertFalse((destination / "inner.zip").exists())
        self.assertEqual(self.store.get(GAME_ID, "Outer").type, "addon")
        self.assert_no_staging_left()


class TestGameResolution(ManagerTestCase):
    async def test_unknown_download_game_installs_for_current(self):
        install_for_current = tr("install_for", game="Skyrim")
        self.decisions.answers = [install_for_current]
        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})
        result = await self.make_manager().install(archive, download_game_id="fallout")

        self.assertTrue(result.succeeded)
        self.assertEqual(self.decisions.dialogs[0].choices,
                         [DialogAction.CANCEL, install_for_current])

    async def test_other_configured_game_can_be_chosen(self):
        other_mods = self.root / "other_mods"
        self.environment = make_environment(self.mods, oblivion=str(other_mods))
        self.decisions.answers = [tr("install_for", game="Oblivion")]
        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})
        result = await self.make_manager().install(archive, download_game_id="oblivion")

        self.assertTrue(result.succeeded)
        self.assertEqual(len(self.decisions.dialogs[0].choices), 3)
        self.assertTrue((other_mods / "CoolMod" / "readme.txt").is_file())
        self.assertTrue(self.store.exists("oblivion", "CoolMod"))

    async def test_canceled_game_choice(self):
        archive = make_zip(self.downloads / "CoolMod.zip", {"readme.txt": "read me"})
        result = await self.make_manager().install(archive, download_game_id="fallout")

        self.assertTrue(result.canceled)
        self.assertIsNone(result.install_id)
        self.assertFalse(self.mods.exists())


class TestQueue(ManagerTestCase):
    async def test_requests_run_one_at_a_time_in_order(self):
        started = []
        running = 0
        max_running = 0

        async def install(file_list, staging_path, game_id, progress):
            nonlocal running, max_running
            running += 1
            max_running = max(max_running, running)
            started.append(Path(staging_path).name)
            await asyncio.sleep(0.01)
            running -= 1
            return copy_everything(file_list, staging_path, game_id, progress)

        manager = self.make_manager(install)
        archives = [make_zip(self.downloads / f"Mod{idx}.zip", {f"file{idx}.txt": "x"})
                    for idx in range(3)]
        futures = [manager.submit(archive) for archive in archives]
        results = await asyncio.gather(*futures)

        self.assertEqual([result.install_id for result in results], ["Mod0", "Mod1", "Mod2"])
        self.assertEqual(started, ["Mod0.installing", "Mod1.installing", "Mod2.installing"])
        self.assertEqual(max_running, 1)

    async def test_abandoned_request_is_canceled_and_cleaned(self):
        entered = asyncio.Event()

        async def install(file_list, staging_path, game_id, progress):
            if Path(staging_path).name.startswith("Slow"):
                entered.set()
                await asyncio.sleep(10)
            return copy_everything(file_list, staging_path, game_id, progress)

        manager = self.make_manager(install)
        slow = manager.submit(make_zip(self.downloads / "Slow.zip", {"a.txt": "a"}))
        fast = manager.submit(make_zip(self.downloads / "Fast.zip", {"b.txt": "b"}))
        await entered.wait()
        slow.cancel()

        result = await fast
        self.assertTrue(result.succeeded)
        self.assertFalse(self.store.exists(GAME_ID, "Slow"))
        self.assertFalse((self.mods / "Slow.installing").exists())


class TestDependencies(ManagerTestCase):
    async def test_failing_dependency_does_not_affect_others(self):
        dep_a = make_zip(self.downloads / "DepA.zip", {"a.esp": "a"})
        self.metadata.by_archive["Parent.zip"] = [LookupResult(rules=[
            Rule(type="requires", reference=Reference(logical_file_name="DepA")),
            Rule(type="requires", reference=Reference(logical_file_name="DepB")),
            Rule(type="recommends", reference=Reference(logical_file_name="DepC")),
        ])]
        self.downloader = FakeDownloader(downloads={"DepA.zip": dep_a}, known={"DepA": "DepA.zip"})
        self.decisions.answers = [DialogAction.INSTALL]
        parent = make_zip(self.downloads / "Parent.zip", {"parent.esp": "p"})

        manager = self.make_manager()
        result = await manager.install(parent)
        self.assertTrue(result.succeeded)
        await manager.wait_idle()

        self.assertTrue(self.store.exists(GAME_ID, "DepA"))
        self.assertTrue((self.mods / "DepA" / "a.esp").is_file())
        errors = self.notifier.of_type(NotificationType.ERROR)
        self.assertEqual([title for _, title, _ in errors],
                         [tr("failed_to_install_dependency", name="DepB")])
        self.assertIn("2", self.decisions.dialogs[0].message)

    async def test_dependency_is_downloaded_from_source(self):
        remote = make_zip(self.root / "remote" / "DepRemote.zip", {"remote.esp": "r"})
        uri = "https://example.com/files/DepRemote.zip"
        self.metadata.by_archive["Parent.zip"] = [LookupResult(rules=[
            Rule(type="requires", reference=Reference(logical_file_name="DepRemote"))])]
        self.metadata.by_reference["DepRemote"] = [LookupResult(source_uri=uri)]
        self.downloader = FakeDownloader(remote={uri: remote})
        self.decisions.answers = [DialogAction.INSTALL]
        parent = make_zip(self.downloads / "Parent.zip", {"parent.esp": "p"})

        manager = self.make_manager()
        result = await manager.install(parent)
        await manager.wait_idle()

        self.assertEqual(result.state, InstallState.SUCCEEDED)
        self.assertEqual(self.downloader.started, [[uri]])
        self.assertTrue(self.store.exists(GAME_ID, "DepRemote"))
        self.assertEqual((self.mods / "DepRemote" / "remote.esp").read_text(), "r")
        self.assertEqual(self.store.get(GAME_ID, "DepRemote").attributes["download_id"],
                         "DepRemote.zip")
        self.assertFalse(self.notifier.of_type(NotificationType.ERROR))

    async def test_dependencies_skipped_when_not_requested(self):
        self.metadata.by_archive["Parent.zip"] = [LookupResult(rules=[
            Rule(type="requires", reference=Reference(logical_file_name="DepA"))])]
        parent = make_zip(self.downloads / "Parent.zip", {"parent.esp": "p"})

        manager = self.make_manager()
        result = await manager.install(parent, process_dependencies=False)
        await manager.wait_idle()

        self.assertTrue(result.succeeded)
        self.assertFalse(self.decisions.dialogs)

    async def test_satisfied_dependency_is_not_installed_again(self):
        self.store.create(GAME_ID, "DepA", attributes={"logical_file_name": "DepA"})
        self.metadata.by_archive["Parent.zip"] = [LookupResult(rules=[
            Rule(type="requires", reference=Reference(logical_file_name="DepA"))])]
        parent = make_zip(self.downloads / "Parent.zip", {"parent.esp": "p"})

        manager = self.make_manager()
        await manager.install(parent)
        await manager.wait_idle()

        self.assertFalse(self.decisions.dialogs)


if __name__ == "__main__":
    unittest.main()
