"""VectorPoint models: What gets written alongside each vector in a vector database."""

from typing import Literal

from pydantic import BaseModel


class TextChunkPayload(BaseModel):
    """Payload stored with every text chunk vector.

    Attributes:
        document_id:  Id of the source document in the entity store.
        chunk_index:  Zero-based position of the chunk within the document.
        chunk_text:   Raw text of the chunk.
        content_hash: SHA-256 of the chunk text, the cache key of its vector.
        modality:     Always "text"; separates chunk vectors from image vectors of the same document.
    """

    modality: Literal["text"] = "text"
    document_id: str
    chunk_index: int
    chunk_text: str
    content_hash: str | None = None


class ImagePayload(BaseModel):
    """Payload stored with every image vector.

    Attributes:
        image_id:       Id of the image in the entity store.
        image_data_ref: BLOB reference of the stored image bytes.
        description:    Optional description the vector was conditioned on.
        document_id:    Id of the document the image was extracted from.
        modality:       Always "image".
    """

    modality: Literal["image"] = "image"
    image_id: str
    image_data_ref: str
    description: str | None = None
    document_id: str | None = None


class VectorPoint(BaseModel):
    """A vector with its id and payload, ready for upsert.

    Attributes:
        id:      Deterministic UUID string; re-upserting the same id overwrites.
        vector:  The embedding.
        payload: Flat metadata dict (a dumped TextChunkPayload or ImagePayload).
    """

    id: str
    vector: list[float]
    payload: dict
