import argparse
import asyncio
import logging
from pathlib import Path

from modinstall.console.color import bcolors, fconsole
from modinstall.console.console_ui import ConsoleDecisions, ConsoleNotifier, ConsoleUX
from modinstall.game.environment import Environment, GameEntry
from modinstall.game.library import LocalLibrary
from modinstall.game.store import YamlPackageStore
from modinstall.helpers.errors import ConfigLoadingError, FileLoggingSetupError
from modinstall.install.extraction import PyArchiveExtractor
from modinstall.install.manager import InstallManager, InstallResult
from modinstall.installers.builtin import register_default_installers
from modinstall.localisation.service import get_current_lang, set_current_lang, tr


def apply_options(environment: Environment, options: argparse.Namespace) -> None:
    """Command line flags override the config file."""
    config = environment.config
    if options.dev:
        config.dev_mode = True
        environment.dev_mode = True
    if options.game:
        config.current_game = options.game
    if options.profile:
        config.active_profile = options.profile
    if options.mods_dir:
        game_id = config.current_game or "default"
        entry = config.games.get(game_id)
        if entry is None:
            config.games[game_id] = GameEntry(name=game_id, mods_path=options.mods_dir)
        else:
            entry.mods_path = options.mods_dir
        config.current_game = game_id


def build_manager(environment: Environment, ux: ConsoleUX) -> InstallManager:
    library = LocalLibrary(environment.config.downloads_dir)
    manager = InstallManager(session=environment,
                             store=YamlPackageStore(environment.store_path),
                             decisions=ConsoleDecisions(ux),
                             notifier=ConsoleNotifier(),
                             extractor=PyArchiveExtractor(),
                             metadata=library,
                             downloader=library,
                             mod_types=environment.build_mod_types())
    register_default_installers(manager.registry)
    return manager


async def install_all(manager: InstallManager, archives: list[Path], enable: bool,
                      process_dependencies: bool) -> list[InstallResult]:
    futures = [manager.submit(archive, enable=enable, process_dependencies=process_dependencies)
               for archive in archives]
    results = await asyncio.gather(*futures)
    await manager.wait_idle()
    await manager.close()
    return results


def print_results(archives: list[Path], results: list[InstallResult]) -> None:
    print(fconsole(tr("installation_results"), bcolors.OKBLUE))
    for archive, result in zip(archives, results, strict=True):
        if result.succeeded:
            print(fconsole(f"  {archive.name}: {tr('mod_installed', name=result.install_id)}",
                           bcolors.OKGREEN))
        elif result.canceled:
            print(fconsole(f"  {archive.name}: {tr('installation_canceled')}", bcolors.WARNING))
        else:
            print(fconsole(f"  {archive.name}: {result.cause}", bcolors.RED))


def main(options: argparse.Namespace) -> int:
    try:
        environment = Environment.load(options.config)
    except ConfigLoadingError as ex:
        print(fconsole(f"{tr('config_loading_error')}: {ex}", bcolors.RED))
        return 1

    lang = options.lang or environment.config.lang
    if lang is not None:
        set_current_lang(lang)

    apply_options(environment, options)
    ux = ConsoleUX(dev_mode=environment.dev_mode)

    # file and console logging setup
    try:
        environment.setup_logging_folder()
        environment.setup_loggers()
    except FileLoggingSetupError as ex:
        print(fconsole(f"{tr('error_logging_setup')}: {ex}", bcolors.RED))
        environment.setup_loggers(stream_only=True)
    logger = logging.getLogger("modinstall")

    if not options.archives:
        print(tr("nothing_to_install"))
        return 0

    game_id = environment.current_game_id
    if game_id is None or not environment.is_discovered(game_id):
        print(fconsole(tr("no_game_configured"), bcolors.RED))
        return 1

    archives = [Path(archive).resolve() for archive in options.archives]
    logger.info(f"Installing {len(archives)} archive(s) for '{game_id}', lang: {get_current_lang()}")
    manager = build_manager(environment, ux)
    results = asyncio.run(install_all(manager, archives, options.enable,
                                      not options.no_dependencies))
    print_results(archives, results)
    return 0 if all(result.succeeded for result in results) else 2
