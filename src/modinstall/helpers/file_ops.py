import asyncio
import errno
import hashlib
import logging
import os
import shutil
import sys
import typing
import zipfile
from collections.abc import Awaitable, Callable
from math import ceil
from pathlib import Path
from typing import Any, TypeVar

import aiofiles
import py7zr
import yaml
from aiopath import AsyncPath
from py7zr.exceptions import PasswordRequired

from modinstall.game.data import BUSY_RETRY_DELAY

logger = logging.getLogger("modinstall")

BUSY_ERRNOS = frozenset({errno.EBUSY, errno.EPERM, errno.EACCES})
HASH_CHUNK_SIZE = 1024 * 1024

T = TypeVar("T")


def is_busy_error(ex: BaseException) -> bool:
    """Check if error looks like a transient lock, usually held by anti-virus or indexer."""
    return isinstance(ex, OSError) and ex.errno in BUSY_ERRNOS


async def retry_on_busy(func: Callable[..., T], *args: Any, delay: float = BUSY_RETRY_DELAY) -> T:  # noqa: ANN401
    """Run blocking filesystem function in thread, retrying exactly once if file is busy."""
    try:
        return await asyncio.to_thread(func, *args)
    except OSError as ex:
        if not is_busy_error(ex):
            raise
        logger.warning(f"'{func.__name__}' failed on busy file ({ex}), retrying once")
        await asyncio.sleep(delay)
        return await asyncio.to_thread(func, *args)


async def ensure_dir_async(path: str | Path) -> None:
    await retry_on_busy(os.makedirs, path, 0o777, True)


def _move_file(source: str, destination: str) -> None:
    try:
        os.replace(source, destination)
    except OSError as ex:
        if ex.errno != errno.EXDEV:
            raise
        shutil.move(source, destination)


async def transfer_file(source: str | Path, destination: str | Path, move: bool) -> None:
    """Copy or move single file, creating parent dirs of destination first."""
    destination = Path(destination)
    await ensure_dir_async(destination.parent)
    if move:
        await retry_on_busy(_move_file, str(source), str(destination))
    else:
        await retry_on_busy(shutil.copy2, str(source), str(destination))


async def write_file_async(path: str | Path, content: str | bytes) -> None:
    path = Path(path)
    await ensure_dir_async(path.parent)
    if isinstance(content, bytes):
        async with aiofiles.open(path, mode="wb") as fh:
            await fh.write(content)
    else:
        async with aiofiles.open(path, mode="w", encoding="utf-8", newline="") as fh:
            await fh.write(content)


def _rmtree(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)


async def remove_path_async(path: str | Path) -> None:
    """Remove file or directory tree, missing path is not an error."""
    await retry_on_busy(_rmtree, str(path))


async def list_tree_async(root: str | Path) -> list[str]:
    """Return relative posix paths of everything under root.

    Directories are listed too, with a trailing slash, as some packages
    rely on empty directories being present.
    """
    root_path = AsyncPath(root)
    listing = []
    async for entry in root_path.rglob("*"):
        relative = entry.relative_to(root_path).as_posix()
        if await entry.is_dir():
            listing.append(relative + "/")
        else:
            listing.append(relative)
    return sorted(listing)


async def get_md5_async(path: str | Path) -> str:
    md5 = hashlib.md5()  # noqa: S324
    async with aiofiles.open(path, mode="rb") as fh:
        while chunk := await fh.read(HASH_CHUNK_SIZE):
            md5.update(chunk)
    return md5.hexdigest()


def decode_zip_name(file_name: str) -> str:
    try:
        file_name.encode("cp437").decode("ascii")
    except UnicodeDecodeError:
        file_name = file_name.encode("cp437").decode("cp866")
    except UnicodeEncodeError:
        pass
    return file_name


def zip_needs_password(archive: zipfile.ZipFile) -> bool:
    return any(info.flag_bits & 0x1 for info in archive.infolist())


async def extract_files_from_zip(
        archive: zipfile.ZipFile,
        file_names: list[str],
        path: str | Path,
        callback: Callable[[int], Awaitable[None]] | None = None,
        files_num: int = 1) -> None:
    # imported lazily: parse_ops -> errors -> localisation -> file_ops is a cycle
    from modinstall.helpers.parse_ops import safe_join

    for file_name_raw in file_names:
        data = archive.read(file_name_raw)
        filepath = safe_join(path, decode_zip_name(file_name_raw))
        if not filepath.parent.is_dir():
            os.makedirs(filepath.parent, exist_ok=True)

        async with aiofiles.open(str(filepath), "wb") as fd:
            await fd.write(data)
        if callback is not None:
            await callback(files_num)
        # extraction is chunked so cancellation can take effect in between
        await asyncio.sleep(0)


async def extract_zip_from_to(archive_path: str | Path, to_path: str | Path,
                              password: str | None = None,
                              callback: Callable[[int], Awaitable[None]] | None = None) -> None:
    # imported lazily: parse_ops -> errors -> localisation -> file_ops is a cycle
    from modinstall.helpers.parse_ops import safe_join

    os.makedirs(to_path, exist_ok=True)
    with zipfile.ZipFile(archive_path, "r") as archive:
        if password is not None:
            archive.setpassword(password.encode())
        # member names are untrusted, all of them are checked before anything is written
        targets = {file.filename: safe_join(to_path, decode_zip_name(file.filename))
                   for file in archive.filelist}
        only_files = []

        for file in archive.filelist:
            if file.is_dir():
                os.makedirs(targets[file.filename], exist_ok=True)
            else:
                only_files.append(file.filename)

        workers = 100
        chunksize = ceil(len(only_files) / workers) or 1
        files_num = len(only_files)
        for i in range(0, files_num, chunksize):
            file_names = only_files[i:(i + chunksize)]
            await extract_files_from_zip(archive, file_names, to_path, callback, files_num)


async def extract_7z_from_to(archive_path: str | Path, to_path: str | Path,
                             password: str | None = None,
                             callback: Callable[[int], Awaitable[None]] | None = None) -> None:
    # imported lazily: parse_ops -> errors -> localisation -> file_ops is a cycle
    from modinstall.helpers.parse_ops import safe_join

    os.makedirs(to_path, exist_ok=True)
    with py7zr.SevenZipFile(str(archive_path), "r", password=password) as archive:
        dirs = []
        files = []
        for file in archive.files:
            if file.is_directory:
                dirs.append(file.filename)
            else:
                files.append(file.filename)

        for file_name in files:
            safe_join(to_path, file_name)
        for one_dir in dirs:
            os.makedirs(safe_join(to_path, one_dir), exist_ok=True)

        archive_size = archive.archiveinfo().uncompressed
        # chunk extraction for every 32MB of internal data to be able to report progress
        default_chunk_file_size = 1024 * 1024 * 32
        workers = round(archive_size / default_chunk_file_size) or 1
        chunksize = ceil(len(files) / workers) or 1

        files_num = len(files)
        for i in range(0, files_num, chunksize):
            archive.reset()
            file_names = files[i:(i + chunksize)]
            await asyncio.to_thread(archive.extract, to_path, file_names)
            if callback is not None:
                await callback(files_num)
            await asyncio.sleep(0)


def sevenzip_needs_password(archive_path: str | Path) -> bool:
    try:
        with py7zr.SevenZipFile(str(archive_path), "r") as archive:
            return archive.needs_password()
    except PasswordRequired:
        # header itself is encrypted
        return True


def load_yaml(stream: typing.IO | str | bytes) -> Any:  # noqa: ANN401
    try:
        return yaml.safe_load(stream)
    except yaml.YAMLError:
        logger.exception("Unable to load yaml")
        return None


def read_yaml(yaml_path: str | Path) -> Any:  # noqa: ANN401
    with open(yaml_path, encoding="utf-8") as stream:
        loaded = load_yaml(stream)
        if loaded is None:
            logger.error(f"Couldn't read yaml at: '{yaml_path}'")
        return loaded


def dump_yaml(data: Any, path: str | Path, sort_keys: bool = True) -> bool:  # noqa: ANN401
    with open(path, "w", encoding="utf-8") as stream:
        try:
            yaml.safe_dump(data, stream, allow_unicode=True, width=1000, sort_keys=sort_keys)
        except yaml.YAMLError as exc:
            logger.error(exc)
            return False
    return True


def get_internal_file_path(file_name: str | Path) -> Path:
    return Path(__file__).parent.parent / file_name


def running_in_venv() -> bool:
    return (hasattr(sys, "real_prefix") or (hasattr(sys, "base_prefix") and
            sys.base_prefix != sys.prefix))
