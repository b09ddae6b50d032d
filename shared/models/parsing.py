"""Parse configuration and parser output models."""

import re
from enum import Enum

from pydantic import BaseModel

from shared.models.errors import InvalidConfigError


class ParseMode(str, Enum):
    # whole range flattened into one string
    STRING = "string"
    # every sub-range kept as its own ordered string
    SECTION = "section"


class ElementSelector(BaseModel):
    """Selects elements to skip, either by absolute index or by a regex searched in the element text."""

    index: int | None = None
    pattern: str | None = None

    def check(self) -> None:
        if (self.index is None) == (self.pattern is None):
            raise InvalidConfigError("An element selector needs exactly one of 'index' or 'pattern'.")
        if self.index is not None and self.index < 0:
            raise InvalidConfigError(f"Selector index must be non-negative, got {self.index}.")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise InvalidConfigError(f"Invalid selector pattern '{self.pattern}': {e}")

    def matches(self, index: int, text: str) -> bool:
        if self.index is not None:
            return index == self.index
        return re.search(self.pattern, text) is not None


class SectionRange(BaseModel):
    """Inclusive element range forming one section."""

    start: int
    end: int


class ParseConfig(BaseModel):
    """How a document's elements (pages, paragraphs, rows) are turned into text.

    Attributes:
        start:    First element, inclusive.
        end:      Last element, inclusive. None means the last element of the document.
        mode:     String or Section output.
        sections: Sub-ranges for Section mode. Empty means one section per element.
        skip:     Elements removed before concatenation.
    """

    start: int = 0
    end: int | None = None
    mode: ParseMode = ParseMode.STRING
    sections: list[SectionRange] = []
    skip: list[ElementSelector] = []

    def check(self) -> None:
        """
        Raises:
            InvalidConfigError: On negative bounds, inverted ranges or bad selectors.
        """
        if self.start < 0:
            raise InvalidConfigError(f"Parse range start must be non-negative, got {self.start}.")
        if self.end is not None and self.end < self.start:
            raise InvalidConfigError(f"Parse range end ({self.end}) is before start ({self.start}).")
        for section in self.sections:
            if section.start < 0 or section.end < section.start:
                raise InvalidConfigError(f"Invalid section range [{section.start}, {section.end}].")
        if self.sections and self.mode != ParseMode.SECTION:
            raise InvalidConfigError("Sections can only be set in section mode.")
        for selector in self.skip:
            selector.check()


class TextOutput(BaseModel):
    """Parser output: one string in String mode, ordered sections in Section mode."""

    mode: ParseMode
    text: str | None = None
    sections: list[str] = []

    def as_sections(self) -> list[str]:
        return [self.text] if self.mode == ParseMode.STRING else list(self.sections)


class ExtractedImage(BaseModel):
    """An image pulled out of a document, before it is stored."""

    page_number: int
    image_number: int
    data: bytes
    format: str
    width: int
    height: int
