"""EPUB 2 packaging for exported stories.

``build_epub`` turns a ``StoryMetadata`` record and the story's ordered
``ContentUnit`` list into the bytes of an EPUB archive. Everything is
assembled in memory; nothing is returned unless the whole archive was
written, so a failed build can never leak a half-written package.

Layout of the generated archive::

    mimetype                  (first entry, stored uncompressed)
    META-INF/container.xml    (points at OEBPS/content.opf)
    OEBPS/style.css
    OEBPS/cover.jpg           (only with cover art)
    OEBPS/cover.xhtml         (only with cover art)
    OEBPS/title.xhtml
    OEBPS/toc.xhtml
    OEBPS/chapter_<n>.xhtml   (one per unit, n = sequence number)
    OEBPS/content.opf
    OEBPS/toc.ncx

Chapter bodies must already be well-formed XHTML (see
``ficarchive.sanitizer.to_xhtml``). Units whose fetch failed for good are
written as a placeholder page so the loss is visible in the book.
"""

from __future__ import annotations

import html
import io
import logging
import uuid
import zipfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import PackagingError
from .models import ContentUnit, Package, StoryMetadata, UnitStatus
from .naming import safe_filename

logger = logging.getLogger(__name__)

EPUB_MEDIA_TYPE = "application/epub+zip"
XHTML_MEDIA_TYPE = "application/xhtml+xml"

# Fixed entry timestamp so that identical input yields identical bytes.
_ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)

_LANGUAGE_CODES = {
    "English": "en",
    "Spanish": "es",
    "French": "fr",
    "German": "de",
    "Chinese": "zh",
    "Japanese": "ja",
}

PLACEHOLDER_BODY = "<p><em>This chapter could not be retrieved after repeated attempts.</em></p>"

STYLESHEET = """body { font-family: "Times New Roman", serif; line-height: 1.5; margin: 5%; }
h1, h2, h3 { text-align: center; }
p { text-indent: 1em; margin-top: 0; margin-bottom: 0.5em; }
hr { border: 0; border-bottom: 1px solid #ccc; margin: 20px 0; }
ul.toc { list-style-type: none; padding: 0; }
ul.toc li { margin-bottom: 0.5em; }
.title-page { text-align: center; margin-top: 20%; }
.cover-img { max-width: 100%; height: auto; margin-bottom: 1em; display: block; margin-left: auto; margin-right: auto; }
.meta-info { margin-top: 2em; font-size: 0.9em; color: #555; }
.missing { text-align: center; color: #a00; }
"""

_XHTML_HEAD = (
    "<?xml version='1.0' encoding='utf-8'?>\n"
    "<!DOCTYPE html PUBLIC '-//W3C//DTD XHTML 1.1//EN' 'http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd'>\n"
    "<html xmlns='http://www.w3.org/1999/xhtml'>\n"
    "<head>\n"
    "<title>{title}</title>\n"
    "<link rel='stylesheet' type='text/css' href='style.css'/>\n"
    "</head>\n"
)


def escape(value: Optional[str]) -> str:
    """Escape ``&``, ``<`` and ``>`` for interpolation into XML."""
    return html.escape(value or "", quote=False)


def chapter_filename(sequence_number: int) -> str:
    return f"chapter_{sequence_number}.xhtml"


def book_uid(meta: StoryMetadata) -> str:
    seed = meta.canonical_url or f"ffn:{meta.id}"
    return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, seed)}"


@dataclass(frozen=True)
class CoverImage:
    filename: str
    media_type: str
    data: bytes


def detect_cover(data: Optional[bytes]) -> Optional[CoverImage]:
    if not data:
        return None
    if data.startswith(b"\x89PNG"):
        return CoverImage("cover.png", "image/png", data)
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return CoverImage("cover.gif", "image/gif", data)
    return CoverImage("cover.jpg", "image/jpeg", data)


def _page(title: str, body: str) -> str:
    return _XHTML_HEAD.format(title=escape(title)) + "<body>\n" + body + "\n</body>\n</html>\n"


def cover_page(cover: CoverImage) -> str:
    # SVG wrapper scales the image to any screen without scrollbars.
    return (
        "<?xml version='1.0' encoding='utf-8'?>\n"
        "<!DOCTYPE html PUBLIC '-//W3C//DTD XHTML 1.1//EN' 'http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd'>\n"
        "<html xmlns='http://www.w3.org/1999/xhtml' xml:lang='en'>\n"
        "<head>\n"
        "<title>Cover</title>\n"
        "<style type='text/css'>\n"
        "@page { padding: 0; margin: 0; }\n"
        "body { text-align: center; padding: 0; margin: 0; }\n"
        "div { padding: 0; margin: 0; text-align: center; }\n"
        "</style>\n"
        "</head>\n"
        "<body>\n"
        "<div>\n"
        "<svg xmlns='http://www.w3.org/2000/svg' xmlns:xlink='http://www.w3.org/1999/xlink' version='1.1' "
        "width='100%' height='100%' viewBox='0 0 600 800' preserveAspectRatio='xMidYMid meet'>\n"
        f"<image width='600' height='800' xlink:href='{cover.filename}'/>\n"
        "</svg>\n"
        "</div>\n"
        "</body>\n"
        "</html>\n"
    )


def title_page(meta: StoryMetadata, cover: Optional[CoverImage]) -> str:
    cover_html = (
        f"<div class='cover'><img src='{cover.filename}' alt='Cover Image' class='cover-img'/></div>\n"
        if cover
        else ""
    )
    details: List[Tuple[str, Optional[str]]] = [
        ("Rated", meta.rating),
        ("Language", meta.language),
        ("Genre", meta.genre),
        ("Characters", meta.characters),
        ("Words", meta.words),
        ("Status", meta.status.value),
        ("Published", meta.published),
        ("Updated", meta.updated),
    ]
    detail_html = "\n".join(f"<p>{label}: {escape(value)}</p>" for label, value in details if value)
    body = (
        "<div class='title-page'>\n"
        f"{cover_html}"
        f"<h1>{escape(meta.title)}</h1>\n"
        f"<h2>by {escape(meta.author)}</h2>\n"
        "<div class='meta-info'>\n"
        f"<p>{escape(meta.description)}</p>\n"
        f"{detail_html}\n"
        f"<p>Source: {escape(meta.source_label)}</p>\n"
        f"<p>URL: {escape(meta.canonical_url)}</p>\n"
        f"<p>ID: {escape(meta.id)}</p>\n"
        "</div>\n"
        "</div>"
    )
    return _page(meta.title, body)


def toc_page(units: Sequence[ContentUnit]) -> str:
    items = "\n".join(
        f"<li><a href='{chapter_filename(unit.sequence_number)}'>{escape(unit.label)}</a></li>" for unit in units
    )
    body = "<h2>Table of Contents</h2>\n<hr/>\n<ul class='toc'>\n" + items + "\n</ul>"
    return _page("Table of Contents", body)


def chapter_page(unit: ContentUnit) -> str:
    if unit.status == UnitStatus.FETCHED and unit.raw_content:
        content = unit.raw_content
    else:
        content = f"<div class='missing'>{PLACEHOLDER_BODY}</div>"
    body = f"<h2>{escape(unit.label)}</h2>\n<hr/>\n{content}"
    return _page(unit.label, body)


def spine_ids(units: Sequence[ContentUnit], has_cover: bool) -> List[str]:
    """Reading order: cover (optional), title page, contents, then every unit."""
    ids = ["cover"] if has_cover else []
    ids += ["titlepage", "toc"]
    ids += [f"chap{unit.sequence_number}" for unit in units]
    return ids


def manifest_items(units: Sequence[ContentUnit], cover: Optional[CoverImage]) -> List[Tuple[str, str, str]]:
    """(id, href, media-type) for every file in the package besides the OPF."""
    items = [
        ("ncx", "toc.ncx", "application/x-dtbncx+xml"),
        ("style", "style.css", "text/css"),
    ]
    if cover:
        items.append(("cover-image", cover.filename, cover.media_type))
        items.append(("cover", "cover.xhtml", XHTML_MEDIA_TYPE))
    items.append(("titlepage", "title.xhtml", XHTML_MEDIA_TYPE))
    items.append(("toc", "toc.xhtml", XHTML_MEDIA_TYPE))
    items += [
        (f"chap{unit.sequence_number}", chapter_filename(unit.sequence_number), XHTML_MEDIA_TYPE) for unit in units
    ]
    return items


def content_opf(meta: StoryMetadata, units: Sequence[ContentUnit], cover: Optional[CoverImage]) -> str:
    manifest = "\n    ".join(
        f"<item id='{item_id}' href='{href}' media-type='{media_type}'/>"
        for item_id, href, media_type in manifest_items(units, cover)
    )
    spine = "\n    ".join(f"<itemref idref='{idref}'/>" for idref in spine_ids(units, cover is not None))
    optional_meta = []
    if cover:
        optional_meta.append("<meta name='cover' content='cover-image'/>")
    if meta.published:
        optional_meta.append(f"<dc:date opf:event='publication'>{escape(meta.published)}</dc:date>")
    if meta.updated:
        optional_meta.append(f"<dc:date opf:event='modification'>{escape(meta.updated)}</dc:date>")
    if meta.genre:
        optional_meta += [f"<dc:subject>{escape(genre)}</dc:subject>" for genre in meta.genre.split("/")]
    if meta.canonical_url:
        optional_meta.append(f"<dc:source>{escape(meta.canonical_url)}</dc:source>")
    guide = []
    if cover:
        guide.append("<reference type='cover' title='Cover' href='cover.xhtml'/>")
    guide.append("<reference type='title-page' title='Title Page' href='title.xhtml'/>")
    guide.append("<reference type='toc' title='Table of Contents' href='toc.xhtml'/>")
    if units:
        guide.append(f"<reference type='text' title='Start' href='{chapter_filename(units[0].sequence_number)}'/>")
    return (
        "<?xml version='1.0' encoding='utf-8'?>\n"
        "<package xmlns='http://www.idpf.org/2007/opf' unique-identifier='BookId' version='2.0'>\n"
        "  <metadata xmlns:dc='http://purl.org/dc/elements/1.1/' xmlns:opf='http://www.idpf.org/2007/opf'>\n"
        f"    <dc:title>{escape(meta.title)}</dc:title>\n"
        f"    <dc:creator opf:role='aut'>{escape(meta.author)}</dc:creator>\n"
        f"    <dc:language>{_LANGUAGE_CODES.get(meta.language or '', 'en')}</dc:language>\n"
        f"    <dc:description>{escape(meta.description)}</dc:description>\n"
        f"    <dc:publisher>{escape(meta.source_label)}</dc:publisher>\n"
        f"    <dc:identifier id='BookId' opf:scheme='UUID'>{book_uid(meta)}</dc:identifier>\n"
        + "".join(f"    {line}\n" for line in optional_meta)
        + "  </metadata>\n"
        "  <manifest>\n"
        "    " + manifest + "\n"
        "  </manifest>\n"
        "  <spine toc='ncx'>\n"
        "    " + spine + "\n"
        "  </spine>\n"
        "  <guide>\n"
        "    " + "\n    ".join(guide) + "\n"
        "  </guide>\n"
        "</package>\n"
    )


def nav_points(units: Sequence[ContentUnit], has_cover: bool) -> List[Tuple[str, str, str]]:
    """(navPoint id, label, src) in play order; mirrors ``spine_ids``."""
    points = []
    if has_cover:
        points.append(("navPoint-cover", "Cover", "cover.xhtml"))
    points.append(("navPoint-title", "Title Page", "title.xhtml"))
    points.append(("navPoint-toc", "Table of Contents", "toc.xhtml"))
    points += [
        (f"navPoint-{unit.sequence_number}", unit.label, chapter_filename(unit.sequence_number)) for unit in units
    ]
    return points


def toc_ncx(meta: StoryMetadata, units: Sequence[ContentUnit], has_cover: bool) -> str:
    navpoints = "\n    ".join(
        f"<navPoint id='{point_id}' playOrder='{order}'>"
        f"<navLabel><text>{escape(label)}</text></navLabel>"
        f"<content src='{src}'/>"
        "</navPoint>"
        for order, (point_id, label, src) in enumerate(nav_points(units, has_cover), start=1)
    )
    return (
        "<?xml version='1.0' encoding='utf-8'?>\n"
        "<ncx xmlns='http://www.daisy.org/z3986/2005/ncx/' version='2005-1'>\n"
        "  <head>\n"
        f"    <meta name='dtb:uid' content='{book_uid(meta)}'/>\n"
        "    <meta name='dtb:depth' content='1'/>\n"
        "    <meta name='dtb:totalPageCount' content='0'/>\n"
        "    <meta name='dtb:maxPageNumber' content='0'/>\n"
        "  </head>\n"
        f"  <docTitle><text>{escape(meta.title)}</text></docTitle>\n"
        f"  <docAuthor><text>{escape(meta.author)}</text></docAuthor>\n"
        "  <navMap>\n"
        "    " + navpoints + "\n"
        "  </navMap>\n"
        "</ncx>\n"
    )


CONTAINER_XML = (
    "<?xml version='1.0' encoding='utf-8'?>\n"
    "<container version='1.0' xmlns='urn:oasis:names:tc:opendocument:xmlns:container'>\n"
    "  <rootfiles>\n"
    "    <rootfile full-path='OEBPS/content.opf' media-type='application/oebps-package+xml'/>\n"
    "  </rootfiles>\n"
    "</container>\n"
)


def _epub_template(meta: StoryMetadata, units: Sequence[ContentUnit]) -> Dict[str, object]:
    """Map every archive path (besides ``mimetype``) to its content, in write order."""
    cover = detect_cover(meta.cover_bytes)
    files: Dict[str, object] = {
        "META-INF/container.xml": CONTAINER_XML,
        "OEBPS/style.css": STYLESHEET,
    }
    if cover:
        files[f"OEBPS/{cover.filename}"] = cover.data
        files["OEBPS/cover.xhtml"] = cover_page(cover)
    files["OEBPS/title.xhtml"] = title_page(meta, cover)
    files["OEBPS/toc.xhtml"] = toc_page(units)
    for unit in units:
        files[f"OEBPS/{chapter_filename(unit.sequence_number)}"] = chapter_page(unit)
    files["OEBPS/content.opf"] = content_opf(meta, units, cover)
    files["OEBPS/toc.ncx"] = toc_ncx(meta, units, cover is not None)
    return files


def _check_units(units: Sequence[ContentUnit]) -> None:
    numbers = [unit.sequence_number for unit in units]
    if numbers != list(range(1, len(units) + 1)):
        raise PackagingError(f"Unit sequence numbers must be 1..{len(units)} in order, got {numbers}")


def _writestr(zf: zipfile.ZipFile, name: str, content: object, compress_type: int) -> None:
    info = zipfile.ZipInfo(name, date_time=_ZIP_DATE_TIME)
    info.compress_type = compress_type
    info.external_attr = 0o644 << 16
    zf.writestr(info, content)


def build_epub(meta: StoryMetadata, units: Sequence[ContentUnit]) -> Package:
    """Create an EPUB package for ``meta`` and its ordered ``units``.

    Raises ``PackagingError`` if the unit list is empty or misnumbered, or
    if the archive cannot be written.
    """
    if not units:
        raise PackagingError("Cannot package a story without chapters.")
    _check_units(units)
    try:
        template = _epub_template(meta, units)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            # mimetype must be the first entry and must not be compressed.
            _writestr(zf, "mimetype", EPUB_MEDIA_TYPE, zipfile.ZIP_STORED)
            for internal_name, content in template.items():
                _writestr(zf, internal_name, content, zipfile.ZIP_DEFLATED)
        data = buffer.getvalue()
    except PackagingError:
        raise
    except Exception as exc:
        raise PackagingError(f"EPUB generation failed: {exc}") from exc

    logger.info("Built EPUB for %r: %d chapters, %d bytes", meta.title, len(units), len(data))
    return Package(
        filename=safe_filename(meta.title, "epub"),
        data=data,
        media_type=EPUB_MEDIA_TYPE,
        entry_count=len(units),
    )
