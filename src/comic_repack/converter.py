"""
Conversion of comic archives

BookConverter turns one CBZ, ZIP or EPUB file into a CBZ or ZIP archive:

- CBZ/ZIP sources keep every entry in archive order under its own file name.
- EPUB sources keep only the images reached through the reading order,
  renamed 0.ext, 1.ext, ... in page order.
- Entries already in the requested image format (or every entry when no
  format is requested) are copied raw, the others are transcoded.

An entry that cannot be read, decoded or written is skipped and reported as a
warning of the file's result. Validation, open and finalize failures fail the
whole file. BatchConverter runs one BookConverter per input on a thread pool
and reports results in input order. Inputs that write the same output path
share one task and run in input order.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .archive import ArchiveReader, ArchiveWriter, ContainerEntry
from .epub_locator import ImageReference, locate_images
from .errors import (
    ArchiveReadError,
    ArchiveWriteError,
    ConversionCancelledError,
    ConversionError,
    ImageError,
    InvalidDestinationError,
)
from .formats import ExportFormat, ImageFormat, SourceContainer, SourceKind, parse_image_format
from .transcoder import DEFAULT_QUALITY, transcode

logger = logging.getLogger(__name__)


@dataclass
class ConvertOptions:
    """Settings shared by every file of a run"""
    export_format: ExportFormat = ExportFormat.CBZ
    image_format: Optional[ImageFormat] = None
    export_dir: Optional[Path] = None
    quality: int = DEFAULT_QUALITY
    workers: Optional[int] = None

    def __post_init__(self):
        self.export_format = ExportFormat.parse(self.export_format)
        self.image_format = parse_image_format(self.image_format)
        if self.export_dir is not None:
            self.export_dir = Path(self.export_dir)
        if not 1 <= self.quality <= 100:
            raise ValueError(f"Quality must be between 1 and 100, got {self.quality}")
        if self.workers is None:
            self.workers = os.cpu_count() or 1
        if self.workers < 1:
            raise ValueError(f"Number of workers must be at least 1, got {self.workers}")


class EntryAction(Enum):
    RAW_COPY = 'raw copy'
    TRANSCODE = 'transcode'


@dataclass(frozen=True)
class ConversionPlan:
    """What to do with one entry"""
    action: EntryAction
    target: Optional[ImageFormat] = None

    def output_name(self, base: str, extension: str) -> str:
        if self.action is EntryAction.TRANSCODE:
            extension = self.target.extension
        return f"{base}.{extension}" if extension else base


RAW_COPY = ConversionPlan(EntryAction.RAW_COPY)


def plan_entry(extension: str, image_format: Optional[ImageFormat]) -> ConversionPlan:
    """Raw copy unless a target format is requested and differs from extension

    The comparison is case-sensitive against the canonical extension, so
    ``PNG`` and ``jpg`` entries are transcoded to ``png`` and ``jpeg``.
    """
    if image_format is None or extension == image_format.extension:
        return RAW_COPY
    return ConversionPlan(EntryAction.TRANSCODE, image_format)


@dataclass(frozen=True)
class EntryWarning:
    """An entry left out of the output, and why"""
    entry: str
    message: str

    def __str__(self) -> str:
        return f"{self.entry}: {self.message}"


class ResultStatus(Enum):
    SUCCESS = 'Success'
    ERROR = 'Error'


@dataclass
class ConversionResult:
    """Outcome of converting one input file"""
    source: Path
    status: ResultStatus
    message: str = ''
    output: Optional[Path] = None
    entries_written: int = 0
    warnings: List[EntryWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    @classmethod
    def failure(cls, source: Path, message: str,
                warnings: Optional[List[EntryWarning]] = None) -> 'ConversionResult':
        return cls(source=source, status=ResultStatus.ERROR, message=message,
                   warnings=list(warnings or []))


def _claim_reference(queue: List[Tuple[int, str]], entry_name: str) -> Optional[int]:
    """Pop the sequence number of the reference whose path ends entry_name"""
    for position, (sequence, path) in enumerate(queue):
        if entry_name == path or entry_name.endswith('/' + path):
            del queue[position]
            return sequence
    return None


class BookConverter:
    """Converts a single comic archive"""

    def __init__(self, source_path: Union[str, Path], options: Optional[ConvertOptions] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.source_path = Path(source_path)
        self.options = options or ConvertOptions()
        self.cancel_event = cancel_event or threading.Event()
        self.warnings: List[EntryWarning] = []

    @property
    def export_dir(self) -> Path:
        if self.options.export_dir is not None:
            return self.options.export_dir
        return self.source_path.parent

    def validate(self) -> SourceContainer:
        """Check the export directory, then the source file and its kind"""
        export_dir = self.export_dir
        if not export_dir.exists():
            raise InvalidDestinationError(f"Folder does not exist: {export_dir}")
        if not export_dir.is_dir():
            raise InvalidDestinationError(f"Path is not a folder: {export_dir}")
        return SourceContainer.from_path(self.source_path)

    def output_path(self, source: SourceContainer) -> Path:
        return source.output_path(self.export_dir, self.options.export_format)

    def planned_output_path(self) -> Path:
        """Output path the conversion will write, without validating the source"""
        return self.export_dir / f"{self.source_path.stem}.{self.options.export_format}"

    def convert(self) -> ConversionResult:
        """Run the conversion, raising ConversionError on fatal failures"""
        self.warnings = []
        source = self.validate()
        output_path = self.output_path(source)
        logger.info(f"Processing {source.name} -> {output_path}")

        references = None
        if source.kind is SourceKind.EPUB:
            references = locate_images(source.path)

        self._check_cancelled()
        with ArchiveWriter.create(output_path) as writer:
            with ArchiveReader.open(source.path) as reader:
                if references is not None:
                    self._convert_epub(reader, writer, references)
                else:
                    self._convert_archive(reader, writer)
            self._check_cancelled()
            written = len(writer)
            writer.finalize()

        logger.info(f"Wrote {written} entries to {output_path.name}, {len(self.warnings)} skipped")
        return ConversionResult(source=source.path, status=ResultStatus.SUCCESS, output=output_path,
                                entries_written=written, warnings=list(self.warnings))

    def run(self) -> ConversionResult:
        """Run the conversion and report fatal failures as an error result"""
        try:
            return self.convert()
        except (ConversionError, OSError) as e:
            logger.error(f"Failed to convert {self.source_path.name}: {e}")
            return ConversionResult.failure(self.source_path, str(e), self.warnings)

    def _convert_archive(self, reader: ArchiveReader, writer: ArchiveWriter) -> None:
        """Copy every file entry of a CBZ/ZIP in archive order"""
        for entry in reader:
            self._check_cancelled()
            if entry.is_dir or not entry.name:
                logger.debug(f"Skipping non-file entry {entry.info.filename!r}")
                continue
            self._append(reader, writer, entry, entry.stem)

    def _convert_epub(self, reader: ArchiveReader, writer: ArchiveWriter,
                      references: Sequence[ImageReference]) -> None:
        """Copy the referenced images of an EPUB, numbered in page order

        Every distinct image path gets one sequence number. Archive entries
        are matched by file name, each consuming one pending reference, so
        pages sharing a file name in different folders are all kept. An entry
        whose path ends with a reference path claims that reference first;
        the remaining entries take the oldest pending reference of their name.
        """
        pending: Dict[str, List[Tuple[int, str]]] = {}
        numbered = set()
        for ref in references:
            if ref.path in numbered:
                continue
            pending.setdefault(ref.file_name, []).append((len(numbered), ref.path))
            numbered.add(ref.path)

        candidates = [entry for entry in reader if not entry.is_dir and entry.file_name in pending]
        matched: List[Tuple[int, ContainerEntry]] = []
        unclaimed: List[ContainerEntry] = []
        for entry in candidates:
            claimed = _claim_reference(pending[entry.file_name], entry.name)
            if claimed is None:
                unclaimed.append(entry)
            else:
                matched.append((claimed, entry))

        for entry in unclaimed:
            queue = pending[entry.file_name]
            if not queue:
                self._warn(entry.name, "no unmatched reference left for this file name")
                continue
            sequence, _ = queue.pop(0)
            matched.append((sequence, entry))

        for queue in pending.values():
            for _, path in queue:
                self._warn(path, "referenced image not found in archive")

        matched.sort(key=lambda pair: pair[0])
        for sequence, entry in matched:
            self._check_cancelled()
            self._append(reader, writer, entry, str(sequence))

    def _append(self, reader: ArchiveReader, writer: ArchiveWriter,
                entry: ContainerEntry, base: str) -> bool:
        plan = plan_entry(entry.extension, self.options.image_format)
        name = plan.output_name(base, entry.extension)
        if name in writer:
            self._warn(entry.name, f"output name {name} already written")
            return False

        try:
            if plan.action is EntryAction.RAW_COPY:
                writer.raw_copy_entry(reader, entry, name)
            else:
                data = reader.read(entry)
                writer.write_entry(name, transcode(data, plan.target, self.options.quality))
        except (ArchiveReadError, ImageError, ArchiveWriteError) as e:
            self._warn(entry.name, str(e))
            return False

        logger.debug(f"Write: {name} ({plan.action.value} of {entry.name})")
        return True

    def _warn(self, entry: str, message: str) -> None:
        logger.warning(f"Skipping {entry} in {self.source_path.name}: {message}")
        self.warnings.append(EntryWarning(entry, message))

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ConversionCancelledError(f"Conversion of {self.source_path.name} cancelled")


@dataclass
class BatchSummary:
    """Results of a batch in input order"""
    results: List[ConversionResult]
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 and not self.cancelled else 1


class BatchConverter:
    """Converts many files concurrently, one task per input file"""

    def __init__(self, paths: Sequence[Union[str, Path]], options: Optional[ConvertOptions] = None,
                 on_result: Optional[Callable[[int, ConversionResult], None]] = None):
        self.paths = [Path(p) for p in paths]
        self.options = options or ConvertOptions()
        self.on_result = on_result
        self.cancel_event = threading.Event()

    def cancel(self) -> None:
        """Ask running conversions to stop at the next entry boundary"""
        self.cancel_event.set()

    def _convert_one(self, path: Path) -> ConversionResult:
        if self.cancel_event.is_set():
            return ConversionResult.failure(path, "Cancelled before start")
        return BookConverter(path, self.options, self.cancel_event).run()

    def _convert_group(self, indexes: List[int]) -> List[Tuple[int, ConversionResult]]:
        """Convert inputs sharing an output path one after another"""
        return [(index, self._convert_one(self.paths[index])) for index in indexes]

    def output_groups(self) -> List[List[int]]:
        """Input indexes grouped by output path, in input order

        Inputs such as a.cbz and a.zip in one folder write the same archive
        and must not run concurrently; the last one in input order wins.
        """
        groups: Dict[str, List[int]] = {}
        for index, path in enumerate(self.paths):
            target = BookConverter(path, self.options).planned_output_path()
            key = os.path.normcase(os.path.realpath(target))
            groups.setdefault(key, []).append(index)

        for indexes in groups.values():
            if len(indexes) > 1:
                names = ', '.join(self.paths[i].name for i in indexes)
                logger.warning(f"{names} write the same output file, converting them in order")
        return list(groups.values())

    def _collect(self, index: int, result: ConversionResult, results: List) -> None:
        results[index] = result
        if self.on_result is not None:
            self.on_result(index, result)

    def run(self) -> BatchSummary:
        results: List[Optional[ConversionResult]] = [None] * len(self.paths)
        if not self.paths:
            return BatchSummary(results=[])

        groups = self.output_groups()
        max_workers = min(self.options.workers, len(groups))
        logger.debug(f"Converting {len(self.paths)} files with {max_workers} workers")

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(self._convert_group, indexes) for indexes in groups]
            try:
                for future in as_completed(futures):
                    for index, result in future.result():
                        self._collect(index, result, results)
            except KeyboardInterrupt:
                logger.warning("Interrupted, cancelling remaining conversions")
                self.cancel()
                for future in futures:
                    for index, result in future.result():
                        if results[index] is None:
                            self._collect(index, result, results)

        return BatchSummary(results=results, cancelled=self.cancel_event.is_set())
