"""
EPUB image discovery

Walks the spine of an EPUB package in reading order and collects the images
each content document shows. Comic EPUBs usually wrap every page in an SVG
``<image xlink:href="...">`` element, so content documents are scanned as a
stream of XML start events for that element. Spine items that are raster
images themselves are taken as they are.

The order of the returned references is the page order of the output archive.
Discovery goes strictly through the spine; images that only appear in the
manifest are not pages and are ignored.
"""

import io
import logging
import posixpath
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union
from urllib.parse import unquote, urldefrag

from ebooklib import epub
from lxml import etree

from .errors import ArchiveOpenError, NoImagesFoundError

logger = logging.getLogger(__name__)

XLINK_NS = 'http://www.w3.org/1999/xlink'
HREF_ATTRIBUTES = ('{%s}href' % XLINK_NS, 'xlink:href')
IMAGE_ELEMENT = 'image'

MARKUP_MEDIA_TYPES = frozenset({
    'application/xhtml+xml',
    'text/html',
    'image/svg+xml',
})


@dataclass(frozen=True)
class ImageReference:
    """An image path inside the EPUB package, relative to the package document"""
    path: str
    document: str

    @property
    def file_name(self) -> str:
        return posixpath.basename(self.path)


def is_raster_media_type(media_type: str) -> bool:
    return media_type.startswith('image/') and media_type not in MARKUP_MEDIA_TYPES


def resolve_href(document: str, href: str) -> str:
    """Resolve href as written in document to a package relative path"""
    href = unquote(urldefrag(href.strip())[0])
    if '://' in href:
        return href
    if href.startswith('/'):
        return posixpath.normpath(href.lstrip('/'))
    return posixpath.normpath(posixpath.join(posixpath.dirname(document), href))


def scan_image_hrefs(content: bytes) -> List[str]:
    """Return the xlink:href of every <image> element in document order

    Only start events are inspected; lxml reports a self-closing element as a
    single start/end pair, so ``<image/>`` and ``<image></image>`` are each
    seen exactly once.
    """
    hrefs = []
    if isinstance(content, str):
        content = content.encode('utf-8')
    if not content.strip():
        return hrefs
    events = etree.iterparse(io.BytesIO(content), events=('start',), recover=True,
                             resolve_entities=False, no_network=True)
    try:
        for _, elem in events:
            if not isinstance(elem.tag, str):
                continue
            if etree.QName(elem).localname != IMAGE_ELEMENT:
                continue
            for key in HREF_ATTRIBUTES:
                value = elem.get(key)
                if value:
                    hrefs.append(value)
                    break
    except etree.LxmlError as e:
        logger.warning(f"Stopped scanning malformed document after {len(hrefs)} images: {e}")
    return hrefs


def read_book(path: Union[str, Path]) -> epub.EpubBook:
    """Open an EPUB package with EbookLib"""
    try:
        return epub.read_epub(str(path), options={'ignore_ncx': True})
    except (epub.EpubException, zipfile.BadZipFile, etree.LxmlError,
            KeyError, AttributeError, IndexError, ValueError, OSError) as e:
        raise ArchiveOpenError(f"Could not open EPUB {Path(path).name}: {e}") from e


def spine_items(book: epub.EpubBook) -> List[epub.EpubItem]:
    """Manifest items of the spine in declared order"""
    items = []
    for entry in book.spine:
        idref = entry[0] if isinstance(entry, (tuple, list)) else entry
        item = book.get_item_with_id(idref)
        if item is None:
            logger.debug(f"Spine references unknown manifest id {idref!r}, skipping")
            continue
        items.append(item)
    return items


def locate_images(path: Union[str, Path]) -> List[ImageReference]:
    """Ordered list of the images shown by an EPUB's reading order"""
    book = read_book(path)
    references = []

    for item in spine_items(book):
        name = item.get_name()
        media_type = item.media_type or ''

        if media_type in MARKUP_MEDIA_TYPES:
            for href in scan_image_hrefs(item.content or b''):
                ref = ImageReference(path=resolve_href(name, href), document=name)
                logger.debug(f"Found image {ref.path} in {name}")
                references.append(ref)
        elif is_raster_media_type(media_type):
            logger.debug(f"Found image {name} in spine")
            references.append(ImageReference(path=name, document=name))
        else:
            logger.debug(f"Skipping spine item {name} with media type {media_type!r}")

    if not references:
        raise NoImagesFoundError(f"No image paths found in EPUB {Path(path).name}")

    logger.info(f"Found {len(references)} image references in {Path(path).name}")
    return references
