"""Tests for reading-position tokens."""

from __future__ import annotations

from conftest import make_txt_document
from libra_link.library.location import clamp_location, decode_location, encode_location
from libra_link.library.models import Document, LineAnchor


def _pdf_doc() -> Document:
    doc = Document(title="doc.pdf", format="pdf")
    for page in (1, 2):
        doc.append(f"--- Page {page} ---", LineAnchor(page=page, offset=0))
        for offset in (1, 2):
            doc.append(f"p{page} l{offset}", LineAnchor(page=page, offset=offset))
    return doc


def _epub_doc() -> Document:
    doc = Document(title="book.epub", format="epub")
    for spine in (0, 2):
        doc.append(f"=== Chapter: {spine} ===", LineAnchor(spine=spine, offset=0))
        for offset in (1, 2, 3):
            doc.append(f"s{spine} o{offset}", LineAnchor(spine=spine, offset=offset))
    return doc


class TestClamp:
    def test_bounds(self):
        doc = make_txt_document(5)
        assert clamp_location(doc, -3) == 0
        assert clamp_location(doc, 2) == 2
        assert clamp_location(doc, 99) == 4

    def test_no_document(self):
        assert clamp_location(None, 10) == 0
        assert clamp_location(Document(title="x", format="txt"), 10) == 0


class TestEncode:
    def test_txt(self):
        assert encode_location(make_txt_document(5), 3) == "fmt=txt;line=3"

    def test_txt_clamps(self):
        assert encode_location(make_txt_document(5), 40) == "fmt=txt;line=4"

    def test_no_document(self):
        assert encode_location(None, 7) == "fmt=txt;line=0"

    def test_pdf(self):
        assert encode_location(_pdf_doc(), 4) == "fmt=pdf;page=2;line=4"

    def test_pdf_infers_page_from_neighbours(self):
        doc = _pdf_doc()
        doc.line_index[5] = LineAnchor(line=5)
        assert encode_location(doc, 5) == "fmt=pdf;page=2;line=5"

    def test_epub(self):
        assert encode_location(_epub_doc(), 6) == "fmt=epub;spine=2;offset=2;line=6"

    def test_epub_without_anchor_offset_uses_line(self):
        doc = _epub_doc()
        doc.line_index[1] = LineAnchor(line=1, spine=0)
        assert encode_location(doc, 1) == "fmt=epub;spine=0;offset=1;line=1"

    def test_format_is_case_insensitive(self):
        doc = _pdf_doc()
        doc.format = " PDF "
        assert encode_location(doc, 0).startswith("fmt=pdf;page=1;")


class TestDecode:
    def test_round_trip(self):
        for doc in (make_txt_document(8), _pdf_doc(), _epub_doc()):
            for line in range(len(doc)):
                assert decode_location(doc, encode_location(doc, line)) == (line, True)

    def test_legacy_form(self):
        assert decode_location(make_txt_document(5), "line:3") == (3, True)
        assert decode_location(make_txt_document(5), "line:300") == (4, True)
        assert decode_location(make_txt_document(5), "line:x") == (0, False)

    def test_line_field_wins(self):
        assert decode_location(_pdf_doc(), "fmt=pdf;page=1;line=5") == (5, True)

    def test_pdf_page_only(self):
        assert decode_location(_pdf_doc(), "fmt=pdf;page=2") == (3, True)
        assert decode_location(_pdf_doc(), "fmt=pdf;page=9") == (0, False)

    def test_epub_spine_and_offset(self):
        assert decode_location(_epub_doc(), "fmt=epub;spine=2;offset=3") == (7, True)

    def test_epub_spine_only_falls_back_to_chapter_start(self):
        assert decode_location(_epub_doc(), "fmt=epub;spine=2;offset=99") == (4, True)
        assert decode_location(_epub_doc(), "fmt=epub;spine=1") == (0, False)

    def test_tolerant_parsing(self):
        token = " FMT = txt ; ; junk ; LINE = 2 "
        assert decode_location(make_txt_document(5), token) == (2, True)

    def test_garbage(self):
        assert decode_location(make_txt_document(5), "") == (0, False)
        assert decode_location(make_txt_document(5), "nonsense") == (0, False)
        assert decode_location(None, "fmt=txt;line=1") == (0, False)
