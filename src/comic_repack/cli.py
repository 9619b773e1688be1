"""
Command line interface for comic-repack

Examples:
  comic-repack book.epub
  comic-repack -f webp -p ~/Comics/out ~/Comics/in/
  comic-repack -i zip -y a.cbz b.epub
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from . import __version__
from .converter import BatchConverter, BatchSummary, ConversionResult, ConvertOptions
from .formats import SUPPORTED_EXTENSIONS, ExportFormat, ImageFormat, SourceKind

logger = logging.getLogger(__name__)

COLORS = {
    'DEBUG': '\x1b[34m',
    'INFO': '\x1b[32m',
    'WARNING': '\x1b[33m',
    'ERROR': '\x1b[31m',
    'CRITICAL': '\x1b[31;1m',
}
RESET = '\x1b[0m'


class ColorFormatter(logging.Formatter):
    """Compact ``LEVEL: message`` formatter with optional ANSI colors"""

    def __init__(self, use_color: bool = False):
        super().__init__('%(levelname)s: %(message)s')
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if self.use_color and record.levelname in COLORS:
            return f"{COLORS[record.levelname]}{text}{RESET}"
        return text


def setup_logging(verbose: bool = False, loglevel: Optional[str] = None,
                  force_color: Optional[bool] = None) -> None:
    """Configure the root logger

    - verbose -> DEBUG level, otherwise INFO
    - loglevel overrides verbose (DEBUG|INFO|WARNING|ERROR)
    - force_color overrides TTY detection of stderr
    """
    root = logging.getLogger()
    root.handlers.clear()

    if loglevel:
        name = loglevel.upper()
        if name == 'WARN':
            name = 'WARNING'
        level = getattr(logging, name, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if force_color is None:
        use_color = hasattr(handler.stream, 'isatty') and handler.stream.isatty()
    else:
        use_color = force_color
    handler.setFormatter(ColorFormatter(use_color))
    root.addHandler(handler)
    root.setLevel(level)


def discover_inputs(paths: Iterable[str]) -> List[Path]:
    """Expand directories recursively into supported archives

    Files are passed through unchanged, even with an unsupported extension, so
    every argument gets a result line. Duplicates are dropped.
    """
    found: List[Path] = []
    seen = set()
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            candidates = sorted(
                (p for p in path.rglob('*') if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS),
                key=lambda p: str(p).lower(),
            )
            if not candidates:
                logger.warning(f"No supported files found in {path}")
        else:
            candidates = [path]
        for candidate in candidates:
            key = candidate.resolve()
            if key not in seen:
                seen.add(key)
                found.append(candidate)
    return found


def confirm(files: List[Path], stream=None) -> bool:
    """Ask the user whether to go ahead with the listed files"""
    stream = stream or sys.stdout
    for path in files:
        print(f"  {path}", file=stream)
    print(f"Convert {len(files)} file(s)? [y/N]: ", end='', file=stream, flush=True)
    try:
        answer = input()
    except EOFError:
        return False
    return answer.strip().lower() in ('y', 'yes')


def needs_confirmation(files: List[Path]) -> bool:
    return any(path.suffix[1:].lower() == SourceKind.EPUB.value for path in files)


def result_line(index: int, total: int, result: ConversionResult, use_color: bool = False) -> str:
    state = result.status.value
    if use_color:
        state = f"{COLORS['INFO'] if result.ok else COLORS['ERROR']}{state}{RESET}"
    line = f"#{index}/{total} {state} {result.source.name}"
    if result.message:
        line += f" {result.message}"
    return line


def print_summary(summary: BatchSummary, stream=None) -> None:
    stream = stream or sys.stdout
    use_color = hasattr(stream, 'isatty') and stream.isatty()
    total = len(summary.results)
    for index, result in enumerate(summary.results, 1):
        print(result_line(index, total, result, use_color), file=stream)
        for warning in result.warnings:
            print(f"    skipped {warning}", file=stream)
    print(f"[Finished!! Success:{summary.succeeded} Error:{summary.failed}]", file=stream)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='comic-repack',
        description="Convert EPUB, CBZ and ZIP comics to CBZ or ZIP, optionally transcoding the images.",
        epilog="Examples:\n"
               "  %(prog)s book.epub\n"
               "  %(prog)s -f webp -p ./out ./comics/\n"
               "  %(prog)s -i zip -y a.cbz b.epub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('paths', nargs='+', metavar='PATH',
                        help='Files or directories (searched recursively for .cbz, .zip and .epub)')
    parser.add_argument('-p', '--export_path', type=Path, default=None,
                        help="Output directory (default: each file's own directory)")
    parser.add_argument('-i', '--fileformat', choices=[f.value for f in ExportFormat],
                        default=ExportFormat.CBZ.value,
                        help='Output file format (default: cbz)')
    parser.add_argument('-f', '--imageformat', type=str.lower,
                        choices=[f.value for f in ImageFormat] + ['jpg'], default=None,
                        help='Image output format (default: keep images unchanged)')
    parser.add_argument('-y', '--yes', action='store_true',
                        help='Do not ask for confirmation before converting EPUB files')
    parser.add_argument('-d', '--delete_file', action='store_true',
                        help='Delete source files after conversion (not supported, ignored)')
    parser.add_argument('-w', '--workers', type=int, default=None,
                        help='Number of files converted in parallel (default: CPU count)')
    parser.add_argument('-q', '--quality', type=int, default=95,
                        help='JPEG/WebP quality (1-100, default: 95)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--loglevel', default=None, help='Explicit log level (DEBUG, INFO, WARNING, ERROR)')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, loglevel=args.loglevel)

    try:
        options = ConvertOptions(
            export_format=args.fileformat,
            image_format=args.imageformat,
            export_dir=args.export_path,
            quality=args.quality,
            workers=args.workers,
        )
    except ValueError as e:
        parser.error(str(e))

    if args.delete_file:
        logger.warning("--delete_file is not supported, source files are kept")

    files = discover_inputs(args.paths)
    if not files:
        logger.error("No input files")
        return 1

    if needs_confirmation(files) and not args.yes and not confirm(files):
        print("Aborted")
        return 1

    summary = BatchConverter(files, options).run()
    print_summary(summary)
    return summary.exit_code
