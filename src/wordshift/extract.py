from __future__ import annotations

import codecs
import re
import unicodedata
import warnings
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from bs4 import BeautifulSoup, Doctype, FeatureNotFound, XMLParsedAsHTMLWarning

__all__ = [
    "SUPPORTED_SUFFIXES",
    "ExtractedText",
    "IngestionError",
    "UnsupportedFormatError",
    "extract_text",
    "html_to_text",
]

HTML_EXTS = (".xhtml", ".html", ".htm")
SUPPORTED_SUFFIXES = (".txt", ".epub")

# Block elements that should start on a new line when collapsing to text.
BLOCK_LEVEL_TAGS = {
    "address",
    "article",
    "aside",
    "blockquote",
    "dd",
    "div",
    "dl",
    "dt",
    "figcaption",
    "figure",
    "footer",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "header",
    "hr",
    "li",
    "main",
    "ol",
    "p",
    "pre",
    "section",
    "table",
    "tr",
    "ul",
}
# Tags that should force a break even when nested inside another block.
FORCE_BREAK_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6", "li", "p", "dt", "dd", "tr"}

_TEXT_ENCODINGS = ("utf-8", "cp1251", "latin-1")


class IngestionError(RuntimeError):
    """Raised when a document cannot be turned into text worth reading."""


class UnsupportedFormatError(IngestionError):
    pass


@dataclass(frozen=True, slots=True)
class ExtractedText:
    text: str
    title: str | None = None


def _decode_text(raw: bytes) -> str:
    if raw.startswith(codecs.BOM_UTF8):
        return raw[len(codecs.BOM_UTF8) :].decode("utf-8", errors="replace")
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return raw.decode("utf-16", errors="replace")
    for enc in _TEXT_ENCODINGS:
        try:
            return raw.decode(enc)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="ignore")


def _soup_from_html(html: str) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(html, "html.parser")


def html_to_text(html: str) -> str:
    """Collapse an HTML document to plain text, one line per block element."""
    soup = _soup_from_html(html)
    for node in list(soup.contents):
        if isinstance(node, Doctype):
            node.extract()
    for tag in soup.find_all(["script", "style", "title"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    # nested blocks only break once, except for the ones that always do
    for tag in soup.find_all(BLOCK_LEVEL_TAGS):
        if tag.name in FORCE_BREAK_TAGS or not tag.find_parent(BLOCK_LEVEL_TAGS):
            tag.insert_before("\n")
    text = soup.get_text(separator="")
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _find_opf_path(zf: zipfile.ZipFile) -> str:
    try:
        container = _decode_text(zf.read("META-INF/container.xml"))
        root = ET.fromstring(container)
    except (KeyError, ET.ParseError):
        root = None
    if root is not None:
        ns = {"c": "urn:oasis:names:tc:opendocument:xmlns:container"}
        for rootfile in root.findall(".//c:rootfile", ns):
            full = rootfile.attrib.get("full-path")
            if full:
                return full
    for name in zf.namelist():
        if name.lower().endswith(".opf"):
            return name
    raise IngestionError("OPF file not found in EPUB")


def _read_opf(zf: zipfile.ZipFile) -> tuple[str, ET.Element]:
    opf_path = _find_opf_path(zf)
    try:
        root = ET.fromstring(_decode_text(zf.read(opf_path)))
    except (KeyError, ET.ParseError) as exc:
        raise IngestionError(f"Unreadable EPUB package document: {exc}") from exc
    return opf_path, root


def _spine_items(zf: zipfile.ZipFile, opf_path: str, root: ET.Element) -> list[str]:
    nsmap = {"opf": root.tag.split("}")[0].strip("{")} if root.tag.startswith("{") else {}
    prefix = "opf:" if nsmap else ""
    manifest: dict[str, str] = {}
    for item in root.findall(f".//{prefix}manifest/{prefix}item", nsmap):
        item_id = item.attrib.get("id")
        href = item.attrib.get("href")
        if item_id and href:
            manifest[item_id] = href
    base = str(PurePosixPath(opf_path).parent)
    items: list[str] = []
    for itemref in root.findall(f".//{prefix}spine/{prefix}itemref", nsmap):
        href = manifest.get(itemref.attrib.get("idref", ""))
        if not href:
            continue
        path = PurePosixPath(base) / href if base not in ("", ".", "/") else PurePosixPath(href)
        items.append(path.as_posix())
    if not items:
        items = [name for name in zf.namelist() if name.lower().endswith(HTML_EXTS)]
    return items


def _book_title(root: ET.Element) -> str | None:
    for title_el in root.findall(".//{http://purl.org/dc/elements/1.1/}title"):
        title = "".join(title_el.itertext()).strip()
        if title:
            return title
    return None


def _extract_epub(path: Path) -> ExtractedText:
    try:
        zf = zipfile.ZipFile(path, "r")
    except zipfile.BadZipFile as exc:
        raise IngestionError(f"{path.name} is not a valid EPUB archive") from exc
    with zf:
        opf_path, root = _read_opf(zf)
        pieces: list[str] = []
        for name in _spine_items(zf, opf_path, root):
            try:
                html = _decode_text(zf.read(name))
            except KeyError:
                continue
            piece = html_to_text(html)
            if piece:
                pieces.append(piece)
        return ExtractedText(text="\n\n".join(pieces), title=_book_title(root))


def extract_text(path: Path) -> ExtractedText:
    """
    Read the text of a ``.txt`` or ``.epub`` file.

    Plain text is decoded as UTF-8 (or UTF-16 with a byte order mark), then
    CP1251 and finally Latin-1. EPUB chapters are read in spine order.
    Anything else raises :class:`UnsupportedFormatError`.
    """
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise UnsupportedFormatError(
            f"Unsupported file type {suffix or '(none)'!r}; expected one of {', '.join(SUPPORTED_SUFFIXES)}"
        )
    if not path.is_file():
        raise IngestionError(f"File not found: {path}")
    if suffix == ".epub":
        return _extract_epub(path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise IngestionError(f"Failed to read {path}: {exc}") from exc
    return ExtractedText(text=_decode_text(raw))
