"""Markdown to safe HTML."""
import markdown
import nh3

MARKDOWN_EXTENSIONS = ["extra", "nl2br", "sane_lists", "toc"]


class MarkdownFilter:
    """Renders user supplied markdown and sanitizes the resulting HTML."""

    def __init__(self, extensions: list[str] | None = None):
        self.extensions = extensions or MARKDOWN_EXTENSIONS

    def filter(self, text: str) -> str:
        # Markdown instances keep per-document state, so each call gets its own.
        md = markdown.Markdown(extensions=self.extensions, output_format="xhtml")
        return nh3.clean(md.convert(text))
