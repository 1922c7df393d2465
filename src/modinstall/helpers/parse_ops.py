import argparse
from pathlib import Path, PurePosixPath
from typing import Any

from pathvalidate import sanitize_filename

from modinstall.game.data import SUPPORTED_ARCHIVES
from modinstall.helpers.errors import UnsafeDestinationError

DEFAULT_INSTALL_NAME = "unnamed"


def init_input_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Archive based mod installer")
    parser.add_argument("archives", nargs="*", help="paths to mod archives to install")
    parser.add_argument("-game", help="id of the game to install for", required=False)
    parser.add_argument("-config", help="path to config file", required=False)
    parser.add_argument("-mods_dir",
                        help="directory to install mods into, overrides config for the game",
                        required=False)
    parser.add_argument("-profile", help="profile to enable installed mods in", required=False)
    parser.add_argument("-enable", help="enable mods after installation",
                        action="store_true", default=False, required=False)
    parser.add_argument("-no_dependencies", help="don't install declared dependencies",
                        action="store_true", default=False, required=False)
    parser.add_argument("-lang", help="interface language", required=False)
    parser.add_argument("-dev", help="developer mode",
                        action="store_true", default=False, required=False)
    return parser


def parse_str_from_dict(dictionary: dict[str, Any], key: str, default: str) -> str:
    value = dictionary.get(key)
    if isinstance(value, str):
        return value.strip()
    return default


def parse_bool_from_dict(dictionary: dict[str, Any], key: str, default: bool) -> bool:
    value = dictionary.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.lower() == "true":
            return True
        if value.lower() == "false":
            return False
    return default


def parse_simple_relative_path(path: str | Path) -> str:
    parsed_path = str(path).replace("\\", "/").strip()
    while parsed_path.endswith("/"):
        parsed_path = parsed_path[:-1].strip()
    while parsed_path.startswith("/"):
        parsed_path = parsed_path[1:].strip()
    return parsed_path


def safe_join(root: str | Path, relative: str | Path) -> Path:
    """Join relative path (as given by installers) to root, refusing to leave root."""
    parsed = parse_simple_relative_path(relative)
    if Path(str(relative).replace("\\", "/")).is_absolute() or ":" in parsed.split("/", 1)[0]:
        raise UnsafeDestinationError(relative)
    parts = PurePosixPath(parsed).parts
    depth = 0
    for part in parts:
        if part == "..":
            depth -= 1
        elif part != ".":
            depth += 1
        if depth < 0:
            raise UnsafeDestinationError(relative)
    return Path(root, *parts)


def archive_base_name(archive_path: str | Path) -> str:
    name = Path(archive_path).name
    for ext in SUPPORTED_ARCHIVES:
        if name.lower().endswith(ext):
            return name[:-len(ext)]
    return Path(archive_path).stem


def sanitize_install_name(name: str) -> str:
    sanitized = sanitize_filename(name.strip(), replacement_text="_").strip(". ")
    return sanitized or DEFAULT_INSTALL_NAME


def derive_install_name(archive_name: str, info: dict[str, Any] | None = None) -> str:
    """Return id the mod will be tracked under, based on archive name and known metadata.

    Explicit custom name wins over logical file name from metadata,
    archive name is used when nothing else is known.
    """
    info = info or {}
    meta = info.get("meta") or {}
    custom_name = parse_str_from_dict(info, "custom_file_name", "")
    if custom_name:
        return sanitize_install_name(custom_name)
    logical_name = parse_str_from_dict(meta, "logical_file_name", "")
    if logical_name:
        version = parse_str_from_dict(meta, "file_version", "")
        return sanitize_install_name(f"{logical_name}-{version}" if version else logical_name)
    return sanitize_install_name(archive_name)

