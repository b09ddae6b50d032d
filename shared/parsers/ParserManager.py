from shared.helper.HelperConfig import HelperConfig
from shared.parsers.ParserInterface import ParserInterface
from shared.models.errors import UnsupportedFormatError
from shared.models.parsing import ExtractedImage, ParseConfig, TextOutput


class ParserManager:
    """
    Routes documents to the parser registered for their format.

    PARSER_ENGINES lists the enabled parsers (default "[pdf,docx,xlsx,text]").
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.parsers = self._initialize_parsers()
        self._by_format: dict[str, ParserInterface] = {
            fmt: parser for parser in self.parsers for fmt in parser.get_formats()
        }

    def _initialize_parsers(self) -> list[ParserInterface]:
        """
        Raises:
            ValueError: If a configured parser does not exist.
        """
        parsers = []
        engines = self.helper_config.get_list_val("PARSER_ENGINES", default=["pdf", "docx", "xlsx", "text"])
        for engine in [e.strip().lower().capitalize() for e in engines]:
            className = f"Parser{engine}"
            try:
                module = __import__(f"shared.parsers.{engine.lower()}.{className}", fromlist=[className])
                parser_class = getattr(module, className)
            except (ImportError, AttributeError) as e:
                raise ValueError(f"Unsupported parser specified: '{engine}'. Error: {e}")
            parsers.append(parser_class(helper_config=self.helper_config))
        return parsers

    def get_supported_formats(self) -> list[str]:
        return sorted(self._by_format)

    def get_parser(self, format: str) -> ParserInterface:
        """
        Raises:
            UnsupportedFormatError: If no parser handles the format.
        """
        parser = self._by_format.get(format.lower().lstrip("."))
        if parser is None:
            raise UnsupportedFormatError(
                f"Unsupported document format '{format}'. Supported: {self.get_supported_formats()}",
                details={"format": format},
            )
        return parser

    def parse(self, data: bytes, format: str, config: ParseConfig) -> TextOutput:
        format = format.lower().lstrip(".")
        return self.get_parser(format).parse(data, format, config)

    def extract_images(self, data: bytes, format: str) -> list[ExtractedImage]:
        format = format.lower().lstrip(".")
        return self.get_parser(format).extract_images(data, format)
