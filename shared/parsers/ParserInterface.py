from abc import ABC, abstractmethod

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import EmptyDocumentError, RangeOutOfBoundsError
from shared.models.parsing import ExtractedImage, ParseConfig, ParseMode, TextOutput


class ParserInterface(ABC):
    """Base class of the format parsers.

    A parser only knows how to split its format into ordered text elements
    (pages, paragraphs, rows). Range, section and skip handling is done here on
    element indices, so it behaves the same for every format.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()

    ##########################################
    ################ GETTER ##################
    ##########################################

    @abstractmethod
    def get_formats(self) -> list[str]:
        """
        Returns the lowercase file extensions handled by the parser. E.g. ["pdf"]
        """
        pass

    def get_element_separator(self, format: str) -> str:
        """
        Returns the string placed between elements when they are concatenated.
        """
        return "\n"

    ##########################################
    ############### EXTRACTION ###############
    ##########################################

    @abstractmethod
    def extract_elements(self, data: bytes, format: str) -> list[str]:
        """Split the document into its ordered text elements.

        Raises:
            CorruptDocumentError: If the bytes cannot be read as the format.
        """
        pass

    def extract_images(self, data: bytes, format: str) -> list[ExtractedImage]:
        """Pull embedded images out of the document. Formats without images return an empty list."""
        return []

    ##########################################
    ################# PARSE ##################
    ##########################################

    def parse(self, data: bytes, format: str, config: ParseConfig) -> TextOutput:
        """Parse a document according to a ParseConfig.

        Args:
            data (bytes): Raw document bytes.
            format (str): File extension of the document.
            config (ParseConfig): Range, mode and skip configuration.

        Returns:
            TextOutput: A single string or the ordered sections.

        Raises:
            InvalidConfigError: If the config is invalid.
            CorruptDocumentError: If the bytes are unreadable.
            RangeOutOfBoundsError: If the range or a section lies past the last element.
            EmptyDocumentError: If nothing is left after skipping.
        """
        config.check()
        elements = self.extract_elements(data, format)
        if not elements:
            raise EmptyDocumentError(f"Document of format '{format}' contains no text elements.")

        last = len(elements) - 1
        if config.start > last:
            raise RangeOutOfBoundsError(
                f"Parse range starts at element {config.start} but the document has {len(elements)} element(s).",
                details={"start": config.start, "end": config.end, "elements": len(elements)},
            )
        end = last if config.end is None else min(config.end, last)

        def keep(index: int) -> bool:
            return not any(selector.matches(index, elements[index]) for selector in config.skip)

        separator = self.get_element_separator(format)
        if config.mode == ParseMode.STRING:
            kept = [elements[i] for i in range(config.start, end + 1) if keep(i)]
            if not kept:
                raise EmptyDocumentError("All elements in the parse range were skipped.")
            return TextOutput(mode=ParseMode.STRING, text=separator.join(kept))

        ranges = [(s.start, s.end) for s in config.sections] or [(i, i) for i in range(config.start, end + 1)]
        sections = []
        for section_start, section_end in ranges:
            # clamp every section into the parse range
            lo, hi = max(section_start, config.start), min(section_end, end)
            if lo > hi:
                raise RangeOutOfBoundsError(
                    f"Section [{section_start}, {section_end}] lies outside the parse range [{config.start}, {end}].",
                    details={"section": [section_start, section_end], "start": config.start, "end": end, "elements": len(elements)},
                )
            kept = [elements[i] for i in range(lo, hi + 1) if keep(i)]
            if kept:
                sections.append(separator.join(kept))
        if not sections:
            raise EmptyDocumentError("No section contains text after applying range and skip selectors.")
        return TextOutput(mode=ParseMode.SECTION, sections=sections)
