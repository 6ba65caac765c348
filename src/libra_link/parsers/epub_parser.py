"""EPUB parser using ebooklib."""

from __future__ import annotations

import posixpath
import warnings
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from bs4 import BeautifulSoup, NavigableString, Tag, XMLParsedAsHTMLWarning
from bs4.element import PreformattedString
from ebooklib import epub
from lxml import etree

warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

from libra_link.errors import AdapterError
from libra_link.library.models import Document, LineAnchor

from .base import BaseParser

SKIP_TAGS = frozenset({"script", "style", "noscript", "svg", "math"})
HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
BLOCK_TAGS = frozenset(
    {
        "p", "div", "section", "article", "header", "footer", "main", "aside",
        "ul", "ol", "li", "blockquote", "pre", "table", "thead", "tbody", "tr",
        "td", "th", "nav",
    }
) | HEADING_TAGS

NCX_MEDIA_TYPE = "application/x-dtbncx+xml"


@dataclass
class _Extract:
    lines: list[str] = field(default_factory=list)
    heading: str = ""


class EpubParser(BaseParser):
    FORMAT = "epub"
    SUPPORTED_EXTENSIONS = (".epub",)

    def load(self, file_path: Path) -> Document:
        check_package(file_path)
        try:
            book = epub.read_epub(str(file_path), options={"ignore_ncx": False})
        except epub.EpubException as e:
            raise AdapterError(f"invalid epub: {e.msg}") from e
        except KeyError as e:
            # A manifest entry missing from the archive
            raise AdapterError(f"invalid epub: {e}") from e
        except (AttributeError, IndexError, TypeError, etree.LxmlError) as e:
            raise AdapterError(f"invalid epub OPF: {e}") from e

        if not list(book.get_items()) or not book.spine:
            raise AdapterError("invalid epub: empty manifest or spine")

        toc_titles = self._collect_titles(book)

        doc = Document(title=file_path.name, format=self.FORMAT)
        for spine_idx, (idref, _linear) in enumerate(book.spine):
            item = book.get_item_with_id(idref)
            if item is None or "html" not in (item.media_type or ""):
                continue
            name = normalize_href(item.get_name())
            # Raw file bytes; EpubHtml.get_content() re-renders the document.
            body = item.content
            if not body:
                continue

            extracted = extract_html_text(body)
            heading = (
                toc_titles.get(name, "").strip()
                or extracted.heading.strip()
                or fallback_chapter_title(name, spine_idx)
            )
            doc.append(f"=== Chapter: {heading} ===", LineAnchor(spine=spine_idx, offset=0))
            for offset, line in enumerate(extracted.lines, start=1):
                doc.append(line, LineAnchor(spine=spine_idx, offset=offset))

        if not doc.lines:
            raise AdapterError("invalid epub: no readable chapters")
        return doc

    def _collect_titles(self, book: epub.EpubBook) -> dict[str, str]:
        """Chapter titles keyed by href. NCX labels win over the nav document."""
        titles: dict[str, str] = {}

        ncx = next((i for i in book.get_items() if i.media_type == NCX_MEDIA_TYPE), None)
        base_dir = posixpath.dirname(ncx.get_name()) if ncx is not None else ""
        flatten_toc(book.toc, base_dir, titles)

        for item in book.get_items():
            if not isinstance(item, epub.EpubNav) or not item.content:
                continue
            base = posixpath.dirname(item.get_name())
            for href, title in parse_nav_titles(item.content, base).items():
                titles.setdefault(href, title)
        return titles


def check_package(file_path: Path) -> str:
    """Walk container.xml to the OPF; returns the OPF path inside the archive."""
    try:
        with zipfile.ZipFile(file_path) as zf:
            names = {_clean(name): name for name in zf.namelist()}
            container_name = names.get("META-INF/container.xml")
            if container_name is None:
                raise AdapterError("invalid epub: missing META-INF/container.xml")
            container = zf.read(container_name)

            try:
                root = etree.fromstring(container)
            except etree.XMLSyntaxError as e:
                raise AdapterError(f"invalid epub container: {e}") from e
            rootfiles = root.xpath(".//*[local-name()='rootfile']")
            full_path = (rootfiles[0].get("full-path") or "").strip() if rootfiles else ""
            if not full_path:
                raise AdapterError("invalid epub: missing rootfile path")

            opf_path = _clean(full_path)
            if opf_path not in names:
                raise AdapterError(f'invalid epub: missing OPF "{opf_path}"')
            try:
                etree.fromstring(zf.read(names[opf_path]))
            except etree.XMLSyntaxError as e:
                raise AdapterError(f"invalid epub OPF: {e}") from e
    except zipfile.BadZipFile as e:
        raise AdapterError(f"invalid epub: {e}") from e
    return opf_path


def _clean(path: str) -> str:
    cleaned = posixpath.normpath(path.strip())
    return "" if cleaned == "." else cleaned.lstrip("/")


def normalize_href(href: str) -> str:
    return _clean(href.strip().split("#", 1)[0])


def fallback_chapter_title(spine_path: str, spine_idx: int) -> str:
    stem = posixpath.splitext(posixpath.basename(spine_path))[0].strip()
    if stem:
        return stem.replace("_", " ")
    return f"Section {spine_idx + 1}"


def flatten_toc(entries, base_dir: str, out: dict[str, str]) -> None:
    """Walk ebooklib's toc tree of Links and (Section, children) pairs."""
    for entry in entries or []:
        if isinstance(entry, tuple):
            section, children = entry
            _add_title(out, base_dir, getattr(section, "href", ""), getattr(section, "title", ""))
            flatten_toc(children, base_dir, out)
        elif isinstance(entry, list):
            flatten_toc(entry, base_dir, out)
        elif isinstance(entry, (epub.Link, epub.Section)):
            _add_title(out, base_dir, entry.href or "", entry.title or "")


def _add_title(out: dict[str, str], base_dir: str, href: str, title: str) -> None:
    href = (href or "").strip()
    title = " ".join((title or "").split())
    if href and title:
        out.setdefault(normalize_href(posixpath.join(base_dir, href)), title)


def parse_nav_titles(data: bytes, base_dir: str) -> dict[str, str]:
    out: dict[str, str] = {}
    soup = BeautifulSoup(data, "lxml")
    for anchor in soup.find_all("a", href=True):
        _add_title(out, base_dir, anchor["href"], _node_text(anchor))
    return out


def extract_html_text(data: bytes) -> _Extract:
    """Flatten one XHTML spine item into paragraph lines."""
    soup = BeautifulSoup(data, "lxml")
    root = soup.body or soup
    out = _Extract()
    tokens: list[str] = []

    def flush() -> None:
        if not tokens:
            return
        line = " ".join(" ".join(tokens).split())
        if line:
            out.lines.append(line)
        tokens.clear()

    def walk(node) -> None:
        if isinstance(node, NavigableString):
            if isinstance(node, PreformattedString):
                return
            text = " ".join(node.split())
            if text:
                tokens.append(text)
            return
        if not isinstance(node, Tag):
            return

        tag = (node.name or "").lower()
        if tag in SKIP_TAGS:
            return
        if tag == "br":
            flush()
            return

        block = tag in BLOCK_TAGS
        if block:
            flush()
        if not out.heading and tag in HEADING_TAGS:
            out.heading = " ".join(_node_text(node).split())
        for child in node.children:
            walk(child)
        if block:
            flush()

    walk(root)
    flush()
    if not out.lines:
        out.lines = [""]
    return out


def _node_text(node: Tag) -> str:
    parts = [s.strip() for s in node.find_all(string=True) if not isinstance(s, PreformattedString)]
    return " ".join(p for p in parts if p)
