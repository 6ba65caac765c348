"""Shared fixtures for tests."""

from __future__ import annotations

import zipfile
from pathlib import Path

import pymupdf
import pytest

from libra_link.config import AppConfig
from libra_link.library.database import Database
from libra_link.library.models import Document, LineAnchor


@pytest.fixture
def db(tmp_path: Path) -> Database:
    db_path = tmp_path / "test.db"
    database = Database(db_path)
    yield database
    database.close()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(data_dir=tmp_path / "data")


def make_txt_document(lines: int = 10) -> Document:
    doc = Document(title="sample.txt", format="txt")
    for i in range(lines):
        doc.append(f"line {i}", LineAnchor(offset=i))
    return doc


def make_pdf(path: Path, pages: list[str]) -> Path:
    pdf = pymupdf.open()
    for text in pages:
        page = pdf.new_page()
        if text:
            page.insert_text((72, 72), text)
    pdf.save(str(path))
    pdf.close()
    return path


CONTAINER_XML = """<?xml version="1.0"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>"""

_OPF = """<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="id">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>Sample</dc:title>
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>
    <item id="c1" href="text/chapter_one.xhtml" media-type="application/xhtml+xml"/>
    <item id="c2" href="text/chapter_two.xhtml" media-type="application/xhtml+xml"/>
    <item id="css" href="style.css" media-type="text/css"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="c1"/>
    <itemref idref="css"/>
    <itemref idref="c2"/>
  </spine>
</package>"""

_NCX = """<?xml version="1.0" encoding="utf-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <navMap>
    <navPoint id="p1">
      <navLabel><text>The Beginning</text></navLabel>
      <content src="text/chapter_one.xhtml#start"/>
    </navPoint>
  </navMap>
</ncx>"""

_NAV = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<body>
  <nav epub:type="toc"><ol>
    <li><a href="text/chapter_one.xhtml">Nav One</a></li>
    <li><a href="text/chapter_two.xhtml">Nav Two</a></li>
  </ol></nav>
</body>
</html>"""

_CHAPTER_ONE = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>ignored</title><style>p { color: red; }</style></head>
<body>
  <h1>Heading One</h1>
  <p>First   paragraph
     text.</p>
  <script>var x = 1;</script>
  <p>Second<br/>line</p>
</body>
</html>"""

_CHAPTER_TWO = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<body><div><p>Only paragraph.</p></div></body>
</html>"""


def make_epub(path: Path, chapter_two: str = _CHAPTER_TWO, with_container: bool = True) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        if with_container:
            zf.writestr("META-INF/container.xml", CONTAINER_XML)
        zf.writestr("OEBPS/content.opf", _OPF)
        zf.writestr("OEBPS/toc.ncx", _NCX)
        zf.writestr("OEBPS/nav.xhtml", _NAV)
        zf.writestr("OEBPS/text/chapter_one.xhtml", _CHAPTER_ONE)
        zf.writestr("OEBPS/text/chapter_two.xhtml", chapter_two)
        zf.writestr("OEBPS/style.css", "p { margin: 0; }")
    return path
