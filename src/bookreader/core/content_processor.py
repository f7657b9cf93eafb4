"""Render processed chapter markup as markdown, text or html."""

from typing import Literal

from bs4 import BeautifulSoup
from markdownify import markdownify as md

from bookreader.models.book import ProcessedChapter

OutputFormat = Literal["markdown", "text", "html"]


class ContentProcessor:
    """Turn a ``ProcessedChapter`` into something printable."""

    def process(
        self,
        chapter: ProcessedChapter,
        output_format: OutputFormat = "markdown",
    ) -> str:
        if output_format == "html":
            return chapter.html

        soup = BeautifulSoup(chapter.html, "lxml")
        for tag in soup(["script", "style"]):
            tag.decompose()

        if output_format == "text":
            return self._to_plain_text(soup)
        return self._to_markdown(soup)

    def _to_markdown(self, soup: BeautifulSoup) -> str:
        markdown = md(str(soup), heading_style="ATX", bullets="-")
        # Collapse runs of blank lines
        cleaned = []
        prev_blank = False
        for line in (line.rstrip() for line in markdown.split("\n")):
            is_blank = not line
            if is_blank and prev_blank:
                continue
            cleaned.append(line)
            prev_blank = is_blank
        return "\n".join(cleaned).strip()

    def _to_plain_text(self, soup: BeautifulSoup) -> str:
        paragraphs = []
        for block in soup.find_all(["p", "h1", "h2", "h3", "h4", "h5", "h6", "li"]):
            text = block.get_text(" ", strip=True)
            if text:
                paragraphs.append(text)
        if not paragraphs:
            return soup.get_text(" ", strip=True)
        return "\n\n".join(paragraphs)
