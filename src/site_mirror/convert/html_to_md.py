from __future__ import annotations

from bs4 import BeautifulSoup
from markdownify import markdownify as md


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _clean_soup_inplace(soup: BeautifulSoup) -> None:
    for tag_name in ["script", "style", "noscript", "template"]:
        for t in soup.find_all(tag_name):
            t.decompose()


def soup_to_markdown(soup: BeautifulSoup) -> str:
    """Convert a parsed document's body to Markdown (mutates ``soup``)."""

    _clean_soup_inplace(soup)
    body = soup.body or soup
    markdown = md(str(body), heading_style="ATX")
    return markdown.strip() + "\n"


def html_to_markdown(html: str) -> str:
    return soup_to_markdown(parse_html(html))
