"""
Error taxonomy for comic-repack

Every failure raised by the library derives from ConversionError so callers
can report a file as failed without catching unrelated exceptions.
"""


class ConversionError(Exception):
    """Base class for all conversion failures"""


class InvalidSourceError(ConversionError):
    """Source path is missing or is not a regular file"""


class InvalidDestinationError(ConversionError):
    """Export path is missing or is not a directory"""


class UnsupportedFormatError(ConversionError):
    """Container or image format is not one of the supported kinds"""


class IoError(ConversionError):
    """Failure of the underlying container codec or file system"""


class ArchiveOpenError(IoError):
    """Source archive could not be opened or is not a ZIP-based container"""


class ArchiveReadError(IoError):
    """A single archive entry could not be read"""


class ArchiveWriteError(IoError):
    """Destination archive could not be created, written or finalized"""


class NoImagesFoundError(ConversionError):
    """EPUB reading order does not reference any image"""


class ImageError(ConversionError):
    """A single image entry could not be transcoded"""


class DecodeError(ImageError):
    """Input bytes are not a recognised image"""


class EncodeError(ImageError):
    """Decoded image could not be written in the target format"""


class ConversionCancelledError(ConversionError):
    """Conversion was interrupted by the cancellation signal"""
