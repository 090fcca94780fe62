from pydantic import BaseModel


class StoredPoint(BaseModel):
    """A point read back from a collection.

    Attributes:
        key:     Vector-store key taken from the payload.
        payload: Raw payload dict (empty when not requested).
        vector:  Stored vector, or None when not requested.
    """

    key: str
    payload: dict = {}
    vector: list[float] | None = None


class SearchHit(BaseModel):
    """A nearest-neighbour result.

    Attributes:
        key:      Vector-store key taken from the payload.
        distance: Distance to the query vector, 0 for an exact match under cosine.
        payload:  Raw payload dict.
    """

    key: str
    distance: float
    payload: dict = {}
