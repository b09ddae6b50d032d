"""QueryMatch model: One ranked result of a similarity query."""

from pydantic import BaseModel


class QueryMatch(BaseModel):
    """
    Attributes:
        id:      Point id.
        score:   Similarity, higher is closer. Backends reporting distances are converted.
        payload: Stored payload of the point.
    """

    id: str
    score: float
    payload: dict = {}
