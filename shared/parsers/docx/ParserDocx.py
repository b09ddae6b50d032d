import io
import zipfile

from docx import Document as open_docx
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
from PIL import Image, UnidentifiedImageError

from shared.parsers.ParserInterface import ParserInterface
from shared.models.errors import CorruptDocumentError
from shared.models.parsing import ExtractedImage


class ParserDocx(ParserInterface):
    """One element per non-empty paragraph or table, in body order.

    DOCX has no fixed pagination, so extracted images all report page 0.
    """

    def get_formats(self) -> list[str]:
        return ["docx"]

    def _open(self, data: bytes):
        try:
            return open_docx(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
            raise CorruptDocumentError(f"Unreadable DOCX: {e}") from e

    def _render_table(self, table: Table) -> str:
        return "\n".join(" | ".join(cell.text.strip() for cell in row.cells) for row in table.rows)

    def extract_elements(self, data: bytes, format: str) -> list[str]:
        doc = self._open(data)
        elements = []
        for block in doc.iter_inner_content():
            text = self._render_table(block) if isinstance(block, Table) else block.text
            if text.strip():
                elements.append(text)
        return elements

    def extract_images(self, data: bytes, format: str) -> list[ExtractedImage]:
        doc = self._open(data)
        images: list[ExtractedImage] = []
        image_rels = [rel for rel in doc.part.rels.values() if "image" in rel.reltype and not rel.is_external]
        for image_number, rel in enumerate(image_rels):
            blob = rel.target_part.blob
            try:
                with Image.open(io.BytesIO(blob)) as img:
                    width, height, fmt = img.width, img.height, (img.format or "png").lower()
            except UnidentifiedImageError:
                # vector formats such as EMF/WMF
                self.logging.warning("Skipping DOCX image %s: unsupported image format", rel.target_ref)
                continue
            images.append(ExtractedImage(
                page_number=0,
                image_number=image_number,
                data=blob,
                format=fmt,
                width=width,
                height=height,
            ))
        return images
