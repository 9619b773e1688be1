"""
Container and image format kinds

SourceKind covers every container we can read, ExportFormat the containers we
can write (EPUB is read-only) and ImageFormat the codecs an image entry can be
transcoded to.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .errors import InvalidSourceError, UnsupportedFormatError


class SourceKind(Enum):
    CBZ = 'cbz'
    ZIP = 'zip'
    EPUB = 'epub'

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_path(cls, path: Path) -> 'SourceKind':
        """Detect the container kind from the file extension"""
        suffix = path.suffix[1:].lower()
        if not suffix:
            raise UnsupportedFormatError(f"Could not determine the file extension: {path.name}")
        for kind in cls:
            if kind.value == suffix:
                return kind
        raise UnsupportedFormatError(f"Unsupported file extension: .{suffix}")


class ExportFormat(Enum):
    CBZ = 'cbz'
    ZIP = 'zip'

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Union[str, 'ExportFormat']) -> 'ExportFormat':
        if isinstance(value, cls):
            return value
        for fmt in cls:
            if fmt.value == str(value).strip().lower():
                return fmt
        raise UnsupportedFormatError(f"Unsupported output file format: {value}")


class ImageFormat(Enum):
    WEBP = 'webp'
    PNG = 'png'
    JPEG = 'jpeg'

    def __str__(self) -> str:
        return self.value

    @property
    def extension(self) -> str:
        """Canonical extension used for output entry names"""
        return self.value

    @property
    def pil_format(self) -> str:
        return _PIL_FORMATS[self]

    @classmethod
    def parse(cls, value: Union[str, 'ImageFormat']) -> 'ImageFormat':
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        if name == 'jpg':
            name = 'jpeg'
        for fmt in cls:
            if fmt.value == name:
                return fmt
        raise UnsupportedFormatError(f"Unsupported image format: {value}")


_PIL_FORMATS = {
    ImageFormat.WEBP: 'WEBP',
    ImageFormat.PNG: 'PNG',
    ImageFormat.JPEG: 'JPEG',
}

SUPPORTED_EXTENSIONS = frozenset('.' + kind.value for kind in SourceKind)


def parse_image_format(value: Optional[str]) -> Optional[ImageFormat]:
    """Parse an optional image format, None meaning raw copy of every entry"""
    if value is None or value == '':
        return None
    return ImageFormat.parse(value)


@dataclass(frozen=True)
class SourceContainer:
    """One validated input archive"""
    path: Path
    kind: SourceKind

    @property
    def stem(self) -> str:
        return self.path.stem

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> 'SourceContainer':
        """Validate that path is an existing regular file with a supported extension"""
        path = Path(path)
        if not path.exists():
            raise InvalidSourceError(f"File does not exist: {path}")
        if not path.is_file():
            raise InvalidSourceError(f"Path is not a file: {path}")
        return cls(path=path, kind=SourceKind.from_path(path))

    def output_path(self, export_dir: Path, export_format: ExportFormat) -> Path:
        return export_dir / f"{self.stem}.{export_format}"
