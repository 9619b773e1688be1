"""
comic-repack - repack EPUB, CBZ and ZIP comics as CBZ or ZIP archives

Images can optionally be transcoded to WebP, PNG or JPEG on the way. EPUB
pages are discovered through the reading order and renumbered 0, 1, 2, ...
"""

__version__ = '1.0.0'

from .converter import (  # noqa: E402
    BatchConverter,
    BatchSummary,
    BookConverter,
    ConversionResult,
    ConvertOptions,
    EntryWarning,
    ResultStatus,
)
from .errors import ConversionError  # noqa: E402
from .formats import ExportFormat, ImageFormat, SourceKind  # noqa: E402

__all__ = [
    'BatchConverter',
    'BatchSummary',
    'BookConverter',
    'ConversionError',
    'ConversionResult',
    'ConvertOptions',
    'EntryWarning',
    'ExportFormat',
    'ImageFormat',
    'ResultStatus',
    'SourceKind',
    '__version__',
]
