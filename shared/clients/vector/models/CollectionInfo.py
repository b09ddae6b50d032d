"""CollectionInfo model: Normalized description of a vector collection."""

from enum import Enum

from pydantic import BaseModel


class DistanceMetric(str, Enum):
    COSINE = "cosine"
    DOT = "dot"
    EUCLID = "euclid"


class CollectionInfo(BaseModel):
    """
    Attributes:
        name:       Collection name as addressed in the backend.
        size:       Vector dimensionality every point must match.
        distance:   Distance metric of the collection.
        properties: Extra metadata the backend keeps about the collection (model, provider).
    """

    name: str
    size: int
    distance: DistanceMetric = DistanceMetric.COSINE
    properties: dict = {}
