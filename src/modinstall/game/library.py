"""Downloads directory: archives lying around with optional metadata sidecars.

Metadata about an archive is kept next to it in ``<archive>.meta.yaml``::

    file_id: 1207
    logical_file_name: Better Roads
    file_version: "1.2"
    game: skyrim
    rules:
      - type: requires
        reference:
          logical_file_name: Road Textures
"""
import asyncio
import logging
import os
import shutil
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests
from pydantic import ValidationError

from modinstall.game.data import METADATA_SIDECAR_SUFFIX, SUPPORTED_ARCHIVES
from modinstall.helpers.errors import DownloadError
from modinstall.helpers.file_ops import get_md5_async, read_yaml
from modinstall.helpers.parse_ops import archive_base_name
from modinstall.install.collaborators import DownloadInfo, LookupResult, Reference

logger = logging.getLogger("modinstall")

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
DOWNLOAD_TIMEOUT = 60


def sidecar_path(archive_path: str | Path) -> Path:
    archive_path = Path(archive_path)
    return archive_path.with_name(archive_path.name + METADATA_SIDECAR_SUFFIX)


def read_sidecar(archive_path: str | Path) -> tuple[LookupResult | None, str | None]:
    """Return metadata and the game id stored next to the archive."""
    path = sidecar_path(archive_path)
    if not path.is_file():
        return None, None
    raw = read_yaml(path)
    if not isinstance(raw, dict):
        return None, None
    game_id = raw.pop("game", None)
    try:
        return LookupResult.model_validate(raw), str(game_id) if game_id is not None else None
    except ValidationError:
        logger.exception(f"Invalid metadata in '{path}'")
        return None, None


class LocalLibrary:
    """Metadata lookup and download collaborator backed by a local directory.

    Download id of an archive is its file name inside the directory.
    """

    def __init__(self, downloads_dir: str | Path | None = None) -> None:
        self.downloads_dir = Path(downloads_dir) if downloads_dir is not None else None
        self._md5_cache: dict[Path, str] = {}

    def archives(self) -> list[Path]:
        if self.downloads_dir is None or not self.downloads_dir.is_dir():
            return []
        return sorted(path for path in self.downloads_dir.iterdir()
                      if path.is_file() and path.suffix.lower() in SUPPORTED_ARCHIVES)

    # metadata lookup

    async def lookup(self, archive_path: Path, game_id: str) -> list[LookupResult]:
        meta, _ = read_sidecar(archive_path)
        if meta is None:
            return []
        if meta.file_md5 is None and Path(archive_path).is_file():
            meta = meta.model_copy(update={"file_md5": await self._md5(Path(archive_path))})
        return [meta]

    async def lookup_reference(self, reference: Reference, game_id: str) -> list[LookupResult]:
        results = []
        for archive in self.archives():
            if await self._matches(archive, reference):
                meta, _ = read_sidecar(archive)
                results.append(meta or LookupResult(source_uri=archive.as_uri()))
        return results

    # downloads

    def get_download(self, download_id: str) -> DownloadInfo | None:
        if self.downloads_dir is None:
            return None
        path = self.downloads_dir / download_id
        if not path.is_file():
            return None
        _, game_id = read_sidecar(path)
        return DownloadInfo(download_id, path, game_id)

    def find_download(self, reference: Reference) -> str | None:
        for archive in self.archives():
            meta, _ = read_sidecar(archive)
            if self._matches_known(archive, meta, reference):
                return archive.name
        return None

    async def start_download(self, uris: list[str]) -> str:
        """Fetch the first working uri into the downloads directory."""
        if self.downloads_dir is None:
            raise DownloadError(", ".join(uris), "Downloads directory is not configured")
        os.makedirs(self.downloads_dir, exist_ok=True)
        last_error = ""
        for uri in uris:
            try:
                path = await asyncio.to_thread(self._fetch, uri)
            except (OSError, requests.RequestException) as ex:
                last_error = str(ex)
                logger.warning(f"Download from '{uri}' failed: {ex}")
                continue
            logger.info(f"Downloaded '{uri}' to '{path}'")
            return path.name
        raise DownloadError(", ".join(uris), f"All sources failed. Last error: {last_error}")

    def _target_path(self, file_name: str) -> Path:
        # don't clobber existing files, add a suffix
        dest = self.downloads_dir / file_name
        counter = 1
        while dest.exists():
            dest = self.downloads_dir / f"{Path(file_name).stem} ({counter}){Path(file_name).suffix}"
            counter += 1
        return dest

    def _fetch(self, uri: str) -> Path:
        parsed = urlparse(uri)
        if parsed.scheme in ("http", "https"):
            return self._stream_download(uri, Path(unquote(parsed.path)).name)
        source = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(uri)
        if not source.is_file():
            raise FileNotFoundError(f"No such file: '{source}'")
        dest = self._target_path(source.name)
        shutil.copy2(source, dest)
        if sidecar_path(source).is_file():
            shutil.copy2(sidecar_path(source), sidecar_path(dest))
        return dest

    def _stream_download(self, url: str, file_name: str) -> Path:
        with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as resp:
            resp.raise_for_status()
            if not file_name:
                disposition = resp.headers.get("Content-Disposition", "")
                if "filename=" in disposition:
                    file_name = disposition.split("filename=")[-1].strip(' "\'')
            dest = self._target_path(file_name or "download.zip")
            with open(dest, "wb") as fh:
                for chunk in resp.iter_content(DOWNLOAD_CHUNK_SIZE):
                    fh.write(chunk)
        return dest

    # matching

    async def _md5(self, archive: Path) -> str:
        if archive not in self._md5_cache:
            self._md5_cache[archive] = await get_md5_async(archive)
        return self._md5_cache[archive]

    def _matches_known(self, archive: Path, meta: LookupResult | None,
                       reference: Reference) -> bool:
        """Match on what is known without hashing, md5 counts only if it's in sidecar or cache."""
        checks = []
        if reference.install_id is not None:
            checks.append(reference.install_id == archive_base_name(archive))
        if reference.logical_file_name is not None:
            checks.append(meta is not None and reference.logical_file_name == meta.logical_file_name)
        if reference.file_id is not None:
            checks.append(meta is not None and reference.file_id == meta.file_id)
        if reference.file_md5 is not None:
            known_md5 = (meta.file_md5 if meta is not None and meta.file_md5
                         else self._md5_cache.get(archive))
            checks.append(reference.file_md5 == known_md5)
        return bool(checks) and all(checks)

    async def _matches(self, archive: Path, reference: Reference) -> bool:
        if reference.file_md5 is not None:
            await self._md5(archive)
        meta, _ = read_sidecar(archive)
        return self._matches_known(archive, meta, reference)
