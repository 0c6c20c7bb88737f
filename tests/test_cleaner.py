"""Tests for listing_sync.cleaner module."""

from __future__ import annotations

from listing_sync.cleaner import Fragment, clean_html, node_text, split_fragments
from listing_sync.extractor import BUSINESS_ID_RE

from .conftest import make_page


def _fragments(html: str) -> list[Fragment]:
    return split_fragments(clean_html(html), BUSINESS_ID_RE)


class TestCleanHtml:
    def test_removes_script_and_style(self):
        soup = clean_html(
            '<div>A111AA77</div><script>var p = "B222BB77";</script><style>td{}</style>'
        )
        text = soup.get_text(" ")
        assert "B222BB77" not in text
        assert "td{}" not in text
        assert "A111AA77" in text

    def test_removes_boilerplate_and_comments(self):
        soup = clean_html("<nav>menu</nav><div>lot</div><!-- C333CC99 --><footer>contacts</footer>")
        text = soup.get_text(" ")
        assert "menu" not in text
        assert "C333CC99" not in text
        assert "contacts" not in text
        assert "lot" in text

    def test_removes_head(self):
        soup = clean_html("<html><head><title>E444EE50</title></head><body>x</body></html>")
        assert "E444EE50" not in soup.get_text(" ")


class TestSplitFragments:
    def test_table_rows_win(self):
        page = make_page(("A111AA77", "1 ₽", ""), ("B222BB77", "2 ₽", ""))
        fragments = _fragments(page)
        assert [f.text for f in fragments] == ["A111AA77 1 ₽", "B222BB77 2 ₽"]
        assert [f.href for f in fragments] == ["/lot/A111AA77", "/lot/B222BB77"]

    def test_rows_without_ids_skipped(self):
        html = "<table><tr><th>Plate</th><th>Price</th></tr><tr><td>A111AA77</td><td>1 ₽</td></tr></table>"
        assert [f.text for f in _fragments(html)] == ["A111AA77 1 ₽"]

    def test_nested_table_resolves_to_inner_rows(self):
        html = (
            "<table><tr><td><table>"
            "<tr><td>A111AA77</td><td>100 ₽</td></tr>"
            "<tr><td>B222BB77</td><td>200 ₽</td></tr>"
            "</table></td></tr></table>"
        )
        assert [f.text for f in _fragments(html)] == ["A111AA77 100 ₽", "B222BB77 200 ₽"]

    def test_attribute_with_angle_bracket(self):
        html = '<table><tr data-note="a > b"><td>A111AA77</td><td>100 ₽</td></tr></table>'
        assert [f.text for f in _fragments(html)] == ["A111AA77 100 ₽"]

    def test_card_with_nested_blocks_stays_whole(self):
        html = (
            '<div class="list">'
            '<div class="card"><a href="/lot/1"><span>A111AA77</span></a><p>100 ₽</p></div>'
            '<div class="card"><span>B222BB77</span><p>200 ₽</p></div>'
            "</div>"
        )
        fragments = _fragments(html)
        assert [f.text for f in fragments] == ["A111AA77 100 ₽", "B222BB77 200 ₽"]
        assert fragments[0].href == "/lot/1"
        assert fragments[1].href is None

    def test_list_items(self):
        html = "<ul><li>A111AA77 100 ₽</li><li>B222BB77 200 ₽</li></ul>"
        assert [f.text for f in _fragments(html)] == ["A111AA77 100 ₽", "B222BB77 200 ₽"]

    def test_plain_text_split_on_lines(self):
        text = "A111AA77 100 ₽\n\nB222BB77 200 ₽\n"
        assert [f.text for f in _fragments(text)] == ["A111AA77 100 ₽", "B222BB77 200 ₽"]


class TestNodeText:
    def test_cells_separated_by_space(self):
        soup = clean_html("<table><tr><td>A111AA77</td><td>150&nbsp;000 ₽</td></tr></table>")
        assert node_text(soup.find("tr")) == "A111AA77 150 000 ₽"

    def test_collapses_whitespace(self):
        soup = clean_html("<p>  a \n\t b </p>")
        assert node_text(soup.find("p")) == "a b"
