import asyncio
import logging
import zipfile
from pathlib import Path

from py7zr.exceptions import (
    Bad7zFile,
    CrcError,
    DecompressionError,
    PasswordRequired,
    UnsupportedCompressionMethodError,
)

from modinstall.helpers.errors import UnsafeDestinationError
from modinstall.helpers.file_ops import (
    extract_7z_from_to,
    extract_zip_from_to,
    sevenzip_needs_password,
    zip_needs_password,
)
from modinstall.install.collaborators import ExtractionResult, PasswordCallback

logger = logging.getLogger("modinstall")

CODE_OK = 0
CODE_FATAL = 2


class PyArchiveExtractor:
    """Extracts zip and 7z archives in-process, reporting problems the way 7z cli does.

    Truncated archives are reported as "Unexpected end of archive" and
    checksum mismatches as "Data Error". Members with paths leading outside
    of destination stop extraction before anything is written. Other
    problems come as is.
    """

    async def extract_full(self, archive_path: Path, destination: Path,
                           password_callback: PasswordCallback) -> ExtractionResult:
        archive_path = Path(archive_path)
        extension = archive_path.suffix.lower()
        try:
            match extension:
                case ".zip":
                    await self._extract_zip(archive_path, destination, password_callback)
                case ".7z":
                    await self._extract_7z(archive_path, destination, password_callback)
                case _:
                    return ExtractionResult(CODE_FATAL, [
                        f"ERROR: {archive_path.name}: Can not open the file as archive"])
        except UnsafeDestinationError as ex:
            logger.error(f"Archive '{archive_path}' has member outside of destination: "
                         f"'{ex.destination}'")
            return ExtractionResult(CODE_FATAL, [f"ERROR: Dangerous path in archive: '{ex.destination}'"])
        except (EOFError, Bad7zFile) as ex:
            logger.exception(f"Archive '{archive_path}' is truncated or not an archive")
            return ExtractionResult(CODE_FATAL, [f"ERROR: Unexpected end of archive ({ex})"])
        except zipfile.BadZipFile as ex:
            if "crc" in str(ex).lower():
                return ExtractionResult(CODE_FATAL, [f"ERROR: Data Error : {ex}"])
            logger.exception(f"Archive '{archive_path}' is truncated or not an archive")
            return ExtractionResult(CODE_FATAL, [f"ERROR: Unexpected end of archive ({ex})"])
        except (CrcError, DecompressionError, PasswordRequired) as ex:
            return ExtractionResult(CODE_FATAL, [f"ERROR: Data Error : {ex}"])
        except RuntimeError as ex:
            if "password" not in str(ex).lower():
                raise
            # wrong password is reported as broken data, same as 7z does
            return ExtractionResult(CODE_FATAL, [f"ERROR: Data Error in encrypted file. Wrong password? ({ex})"])
        except (UnsupportedCompressionMethodError, NotImplementedError) as ex:
            return ExtractionResult(CODE_FATAL, [f"ERROR: Unsupported compression method ({ex})"])
        return ExtractionResult(CODE_OK)

    async def _extract_zip(self, archive_path: Path, destination: Path,
                           password_callback: PasswordCallback) -> None:
        password = None
        with zipfile.ZipFile(archive_path, "r") as archive:
            if zip_needs_password(archive):
                password = await password_callback()
        await extract_zip_from_to(archive_path, destination, password)

    async def _extract_7z(self, archive_path: Path, destination: Path,
                          password_callback: PasswordCallback) -> None:
        password = None
        if await asyncio.to_thread(sevenzip_needs_password, archive_path):
            password = await password_callback()
        await extract_7z_from_to(archive_path, destination, password)
