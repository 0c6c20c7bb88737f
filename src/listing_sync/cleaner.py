"""Markup cleanup for listing pages.

The extractor only needs the text around each business id, so this module
drops script/style bodies and page boilerplate, then cuts the page into
candidate fragments: the innermost table rows that carry an id, otherwise the
innermost block elements that carry one, otherwise plain text lines.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, Comment, Tag

_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "iframe", "noscript", "head"]
_BLOCK_TAGS = [
    "div", "li", "p", "article", "section", "dd", "dt",
    "h1", "h2", "h3", "h4", "h5", "h6",
]


@dataclass(frozen=True)
class Fragment:
    """Plain text of one candidate element plus its first link, if any."""

    text: str
    href: str | None = None


def clean_html(raw_html: str) -> BeautifulSoup:
    """Parse the page and strip script/style bodies, boilerplate elements and comments."""
    soup = BeautifulSoup(raw_html, "html.parser")
    for node in soup.find_all(_BOILERPLATE_TAGS):
        node.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    return soup


def node_text(node: Tag) -> str:
    """Text of an element, cells and inline pieces separated by a single space."""
    return collapse_whitespace(node.get_text(" ", strip=True))


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def first_href(node: Tag) -> str | None:
    link = node.find("a", href=True)
    return link["href"] if link is not None else None


def split_fragments(soup: BeautifulSoup, anchor: re.Pattern[str]) -> list[Fragment]:
    """
    Cut a cleaned page into candidate fragments.

    Only elements whose text matches `anchor` are candidates, and an element
    is dropped when one of its descendants is itself a candidate, so nested
    tables and wrapper divs resolve to the row or card that holds the id.
    Table rows win when the page has any; pages with no matching element
    (plain text, inline-only markup) fall back to text lines.
    """
    tags = ["tr"] if soup.find("tr") is not None else _BLOCK_TAGS
    candidates = [node for node in soup.find_all(tags) if anchor.search(node_text(node))]
    candidate_ids = {id(node) for node in candidates}
    innermost = [
        node for node in candidates
        if not any(id(child) in candidate_ids for child in node.find_all(tags))
    ]
    if innermost:
        return [Fragment(node_text(node), first_href(node)) for node in innermost]

    lines = (collapse_whitespace(line) for line in soup.get_text(" ").splitlines())
    return [Fragment(line) for line in lines if line]
