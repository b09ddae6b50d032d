import fitz  # PyMuPDF

from shared.parsers.ParserInterface import ParserInterface
from shared.models.errors import CorruptDocumentError
from shared.models.parsing import ExtractedImage


class ParserPdf(ParserInterface):
    """One element per page."""

    def get_formats(self) -> list[str]:
        return ["pdf"]

    def _open(self, data: bytes) -> fitz.Document:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as e:
            raise CorruptDocumentError(f"Unreadable PDF: {e}") from e
        if doc.needs_pass:
            doc.close()
            raise CorruptDocumentError("PDF is encrypted.")
        return doc

    def extract_elements(self, data: bytes, format: str) -> list[str]:
        with self._open(data) as doc:
            return [page.get_text("text") for page in doc]

    def extract_images(self, data: bytes, format: str) -> list[ExtractedImage]:
        images: list[ExtractedImage] = []
        with self._open(data) as doc:
            for page_number, page in enumerate(doc):
                for image_number, img in enumerate(page.get_images(full=True)):
                    xref = img[0]
                    info = doc.extract_image(xref)
                    if not info or not info.get("image"):
                        self.logging.warning("Skipping unreadable image xref=%s on page %d", xref, page_number)
                        continue
                    images.append(ExtractedImage(
                        page_number=page_number,
                        image_number=image_number,
                        data=info["image"],
                        format=info.get("ext", "png"),
                        width=int(info.get("width", 0)),
                        height=int(info.get("height", 0)),
                    ))
        self.logging.debug("Extracted %d image(s) from PDF", len(images))
        return images
