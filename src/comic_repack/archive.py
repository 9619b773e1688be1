"""
ZIP container adapters

ArchiveReader gives random access to the entries of a ZIP based container
(CBZ, ZIP and EPUB all share the format). ArchiveWriter builds a new archive
and accepts entries either as fresh bytes or as a raw copy of a reader entry,
in which case the compressed payload is transferred without being inflated
and deflated again.

The writer stages its output in a uniquely named sibling ``.part`` file and
only moves it into place on finalize(), so an unfinished archive never shadows
the target path, two writers aimed at the same target never share a file, and
a source can safely be converted onto its own file name.
"""

import logging
import os
import struct
import uuid
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional, Set, Union

from .errors import ArchiveOpenError, ArchiveReadError, ArchiveWriteError

logger = logging.getLogger(__name__)

# Local file header field positions (see APPNOTE.TXT 4.3.7)
_FH_FILENAME_LENGTH = 10
_FH_EXTRA_FIELD_LENGTH = 11

_MASK_USE_DATA_DESCRIPTOR = 0x08

PART_SUFFIX = '.part'


def mangle_name(name: str) -> str:
    """Normalize a stored entry path into a relative, traversal-free form"""
    name = name.replace('\\', '/').replace('\x00', '')
    parts = [part for part in name.split('/') if part not in ('', '.', '..')]
    # Drop a Windows drive prefix such as "C:"
    if parts and len(parts[0]) == 2 and parts[0][1] == ':':
        parts = parts[1:]
    return '/'.join(parts)


def _write_precompressed(zf: zipfile.ZipFile, info: zipfile.ZipInfo, payload: bytes) -> None:
    """Append an entry whose compressed payload and sizes are already known

    zipfile has no public API for this. The body mirrors what
    ZipFile._open_to_write and _ZipWriteFile.close do and touches the private
    members _lock, _writing, _writecheck, _didModify and start_dir. Checked
    against CPython 3.9 through 3.13.
    """
    with zf._lock:
        if zf._writing:
            raise ValueError("Can't write to the ZIP file while there is an open writing handle")
        zf.fp.seek(zf.start_dir)
        info.header_offset = zf.fp.tell()
        zf._writecheck(info)
        zf._didModify = True
        zf.fp.write(info.FileHeader())
        zf.fp.write(payload)
        zf.filelist.append(info)
        zf.NameToInfo[info.filename] = info
        zf.start_dir = zf.fp.tell()


@dataclass(frozen=True)
class ContainerEntry:
    """One member of a source archive"""
    index: int
    name: str
    size: int
    compress_size: int
    is_dir: bool
    info: zipfile.ZipInfo

    @property
    def file_name(self) -> str:
        return PurePosixPath(self.name).name if self.name else ''

    @property
    def stem(self) -> str:
        return PurePosixPath(self.name).stem if self.name else ''

    @property
    def extension(self) -> str:
        return PurePosixPath(self.name).suffix[1:] if self.name else ''


class ArchiveReader:
    """Random access reader over the entries of a ZIP based container"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._zip: Optional[zipfile.ZipFile] = None
        self._raw = None
        self._infos = []

    @classmethod
    def open(cls, path: Union[str, Path]) -> 'ArchiveReader':
        reader = cls(path)
        try:
            reader._zip = zipfile.ZipFile(reader.path, 'r')
            reader._raw = open(reader.path, 'rb')
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError) as e:
            reader.close()
            raise ArchiveOpenError(f"Could not open archive {reader.path.name}: {e}") from e
        reader._infos = reader._zip.infolist()
        logger.debug(f"Opened {reader.path} with {len(reader._infos)} entries")
        return reader

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None
        if self._raw is not None:
            self._raw.close()
            self._raw = None

    def __enter__(self) -> 'ArchiveReader':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._infos)

    def __iter__(self) -> Iterator[ContainerEntry]:
        for index in range(len(self._infos)):
            yield self.entry(index)

    def entry(self, index: int) -> ContainerEntry:
        info = self._infos[index]
        return ContainerEntry(
            index=index,
            name=mangle_name(info.filename),
            size=info.file_size,
            compress_size=info.compress_size,
            is_dir=info.is_dir(),
            info=info,
        )

    def read(self, entry: ContainerEntry) -> bytes:
        """Return the uncompressed bytes of an entry"""
        self._check_open()
        try:
            return self._zip.read(entry.info)
        except (zipfile.BadZipFile, NotImplementedError, RuntimeError, OSError, EOFError, zlib.error) as e:
            raise ArchiveReadError(f"Could not read {entry.name}: {e}") from e

    def read_raw(self, entry: ContainerEntry) -> bytes:
        """Return the compressed payload of an entry exactly as stored"""
        self._check_open()
        info = entry.info
        try:
            self._raw.seek(info.header_offset)
            header = self._raw.read(zipfile.sizeFileHeader)
            if len(header) != zipfile.sizeFileHeader:
                raise ArchiveReadError(f"Truncated local header for {entry.name}")
            fields = struct.unpack(zipfile.structFileHeader, header)
            if fields[0] != zipfile.stringFileHeader:
                raise ArchiveReadError(f"Bad local header magic for {entry.name}")
            self._raw.seek(fields[_FH_FILENAME_LENGTH] + fields[_FH_EXTRA_FIELD_LENGTH], os.SEEK_CUR)
            payload = self._raw.read(info.compress_size)
        except (OSError, struct.error) as e:
            raise ArchiveReadError(f"Could not read {entry.name}: {e}") from e
        if len(payload) != info.compress_size:
            raise ArchiveReadError(f"Truncated data for {entry.name}")
        return payload

    def _check_open(self) -> None:
        if self._zip is None:
            raise ArchiveReadError(f"Archive is closed: {self.path.name}")


class ArchiveWriter:
    """Builds a new ZIP container in a single forward pass"""

    def __init__(self, path: Union[str, Path], compression: int = zipfile.ZIP_DEFLATED,
                 compresslevel: int = 6):
        self.path = Path(path)
        self.staging_path = self.path.with_name(f"{self.path.name}.{uuid.uuid4().hex[:12]}{PART_SUFFIX}")
        self.compression = compression
        self.compresslevel = compresslevel
        self._zip: Optional[zipfile.ZipFile] = None
        self._names: Set[str] = set()
        self.finalized = False

    @classmethod
    def create(cls, path: Union[str, Path], **kwargs) -> 'ArchiveWriter':
        writer = cls(path, **kwargs)
        if not writer.path.parent.is_dir():
            raise ArchiveWriteError(f"Destination directory does not exist: {writer.path.parent}")
        try:
            writer._zip = zipfile.ZipFile(writer.staging_path, 'x', writer.compression,
                                          compresslevel=writer.compresslevel)
        except OSError as e:
            raise ArchiveWriteError(f"Could not create {writer.path}: {e}") from e
        logger.debug(f"Writing {writer.path} (staged as {writer.staging_path.name})")
        return writer

    def __enter__(self) -> 'ArchiveWriter':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.finalized:
            self.discard()

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: str) -> bool:
        return name in self._names

    def write_entry(self, name: str, data: bytes) -> None:
        """Append a new entry holding data"""
        self._check_writable(name)
        try:
            self._zip.writestr(name, data)
        except (OSError, ValueError, zipfile.LargeZipFile) as e:
            raise ArchiveWriteError(f"Could not write {name}: {e}") from e
        self._names.add(name)

    def raw_copy_entry(self, reader: ArchiveReader, entry: ContainerEntry, new_name: str) -> None:
        """Append a reader entry under new_name without recompressing it"""
        self._check_writable(new_name)
        payload = reader.read_raw(entry)
        src = entry.info

        info = zipfile.ZipInfo(new_name, date_time=src.date_time)
        info.compress_type = src.compress_type
        info.CRC = src.CRC
        info.compress_size = src.compress_size
        info.file_size = src.file_size
        # Sizes are known up front, so no trailing data descriptor follows the payload
        info.flag_bits = src.flag_bits & ~_MASK_USE_DATA_DESCRIPTOR
        info.external_attr = src.external_attr
        info.create_system = src.create_system
        info.extract_version = src.extract_version

        try:
            _write_precompressed(self._zip, info, payload)
        except (OSError, ValueError, NotImplementedError, RuntimeError, AttributeError,
                zipfile.LargeZipFile) as e:
            raise ArchiveWriteError(f"Could not copy {entry.name} as {new_name}: {e}") from e
        self._names.add(new_name)

    def finalize(self) -> Path:
        """Write the central directory and move the archive into place"""
        if self.finalized:
            raise ArchiveWriteError(f"Archive already finalized: {self.path}")
        if self._zip is None:
            raise ArchiveWriteError(f"Archive was discarded: {self.path}")
        try:
            self._zip.close()
            self._zip = None
            os.replace(self.staging_path, self.path)
        except OSError as e:
            self.discard()
            raise ArchiveWriteError(f"Could not finalize {self.path}: {e}") from e
        self.finalized = True
        logger.debug(f"Finalized {self.path} with {len(self._names)} entries")
        return self.path

    def discard(self) -> None:
        """Drop the staged archive, leaving any existing target untouched"""
        if self._zip is not None:
            try:
                self._zip.close()
            except (OSError, ValueError) as e:
                logger.debug(f"Ignoring close error while discarding {self.staging_path}: {e}")
            self._zip = None
        if self.staging_path.exists():
            self.staging_path.unlink()
            logger.debug(f"Discarded partial archive {self.staging_path}")

    def _check_writable(self, name: str) -> None:
        if self.finalized or self._zip is None:
            raise ArchiveWriteError(f"Archive is closed, cannot add {name}")
