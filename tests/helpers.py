"""
Builders for the archives and images used across the test suite
"""

import io
import os
import sys
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image

# Add the src directory to Python path so we can import comic_repack
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))


def make_image_bytes(fmt: str = 'JPEG', size=(8, 12), color=(200, 30, 30), mode: str = 'RGB') -> bytes:
    """Encode a small solid image"""
    if mode == 'RGBA' and len(color) == 3:
        color = color + (128,)
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, fmt)
    return buf.getvalue()


def make_zip(path: Path, entries: Sequence[Tuple[str, bytes]],
             compression: int = zipfile.ZIP_DEFLATED) -> Path:
    """Write a ZIP archive holding entries in the given order"""
    with zipfile.ZipFile(path, 'w', compression) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return path


CONTAINER_XML = """<?xml version="1.0"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
    <rootfiles>
        <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
    </rootfiles>
</container>"""


def svg_page(hrefs: Sequence[str], self_closing: bool = True) -> str:
    """XHTML page wrapping each href in an SVG <image> element"""
    if self_closing:
        images = ''.join(f'<image width="8" height="12" xlink:href="{href}"/>' for href in hrefs)
    else:
        images = ''.join(f'<image width="8" height="12" xlink:href="{href}"></image>' for href in hrefs)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<head><title>page</title><link rel="stylesheet" type="text/css" href="../style/book.css"/></head>
<body>
<div>
<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" version="1.1" viewBox="0 0 8 12">
{images}
</svg>
</div>
</body>
</html>"""


def make_epub(path: Path,
              documents: Sequence[Tuple[str, str]],
              images: Dict[str, bytes],
              spine: Optional[List[str]] = None,
              image_order: Optional[List[str]] = None,
              extra_items: Sequence[Tuple[str, str, bytes]] = ()) -> Path:
    """Write a minimal EPUB 3 package

    documents: (href, xhtml) pairs relative to OEBPS, in manifest order
    images: href relative to OEBPS -> bytes
    spine: manifest ids in reading order (default: every document in order)
    image_order: order in which image files are stored in the archive
    extra_items: (href, media type, bytes) added to the manifest only
    """
    manifest = []
    ids = {}
    for i, (href, _) in enumerate(documents):
        ids[href] = f"doc{i}"
        manifest.append(f'<item id="doc{i}" href="{href}" media-type="application/xhtml+xml"/>')
    for i, href in enumerate(images):
        ids[href] = f"img{i}"
        media_type = 'image/png' if href.endswith('.png') else 'image/jpeg'
        manifest.append(f'<item id="img{i}" href="{href}" media-type="{media_type}"/>')
    manifest.append('<item id="css" href="style/book.css" media-type="text/css"/>')
    for i, (href, media_type, _) in enumerate(extra_items):
        manifest.append(f'<item id="extra{i}" href="{href}" media-type="{media_type}"/>')

    if spine is None:
        spine = [ids[href] for href, _ in documents]
    itemrefs = ''.join(f'<itemref idref="{idref}"/>' for idref in spine)

    content_opf = f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="BookID" version="3.0">
    <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
        <dc:title>Test Comic</dc:title>
        <dc:identifier id="BookID">test-comic-123</dc:identifier>
        <dc:language>en</dc:language>
    </metadata>
    <manifest>
        {''.join(manifest)}
    </manifest>
    <spine>{itemrefs}</spine>
</package>"""

    with zipfile.ZipFile(path, 'w') as epub:
        epub.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        epub.writestr("META-INF/container.xml", CONTAINER_XML)
        epub.writestr("OEBPS/content.opf", content_opf)
        epub.writestr("OEBPS/style/book.css", "body { margin: 0; }")
        for href, xhtml in documents:
            epub.writestr(f"OEBPS/{href}", xhtml)
        for href in (image_order or list(images)):
            epub.writestr(f"OEBPS/{href}", images[href])
        for href, _, data in extra_items:
            epub.writestr(f"OEBPS/{href}", data)
    return path


def entry_names(path: Path) -> List[str]:
    with zipfile.ZipFile(path) as zf:
        return zf.namelist()


def entry_bytes(path: Path, name: str) -> bytes:
    with zipfile.ZipFile(path) as zf:
        return zf.read(name)
