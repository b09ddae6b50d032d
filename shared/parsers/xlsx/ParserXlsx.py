import io
import zipfile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from shared.parsers.ParserInterface import ParserInterface
from shared.models.errors import CorruptDocumentError


class ParserXlsx(ParserInterface):
    """One element per non-empty row across all sheets, cells joined by commas."""

    def get_formats(self) -> list[str]:
        return ["xlsx"]

    def extract_elements(self, data: bytes, format: str) -> list[str]:
        try:
            workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError) as e:
            raise CorruptDocumentError(f"Unreadable spreadsheet: {e}") from e
        rows = []
        try:
            for sheet in workbook.worksheets:
                for row in sheet.iter_rows(values_only=True):
                    cells = ["" if value is None else str(value).strip() for value in row]
                    if any(cells):
                        rows.append(",".join(cells))
        finally:
            workbook.close()
        return rows
