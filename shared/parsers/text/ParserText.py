import re

from shared.parsers.ParserInterface import ParserInterface
from shared.models.errors import CorruptDocumentError

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


class ParserText(ParserInterface):
    """Plain text formats.

    txt/md: one element per blank-line separated paragraph.
    csv:    one element per line.
    """

    def get_formats(self) -> list[str]:
        return ["txt", "md", "csv"]

    def get_element_separator(self, format: str) -> str:
        return "\n" if format == "csv" else "\n\n"

    def extract_elements(self, data: bytes, format: str) -> list[str]:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise CorruptDocumentError(f"Text document is not valid UTF-8: {e}") from e
        text = text.replace("\r\n", "\n")
        if format == "csv":
            return [line for line in text.split("\n") if line.strip()]
        return [p.strip("\n") for p in _PARAGRAPH_BREAK.split(text) if p.strip()]
