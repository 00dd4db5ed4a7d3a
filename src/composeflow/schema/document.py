"""Documents flowing through loaders, transformers, retrievers and indexers."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Document:
    """
    A piece of text with metadata.

    Attributes:
        id: Stable identifier, typically assigned by a loader or an indexer.
        content: Text content.
        metadata: Arbitrary metadata. Well-known keys are exposed as
            properties (``score``, ``sub_indexes``, ``dense_vector``).
    """

    id: str = ""
    content: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def score(self) -> float:
        return float(self.metadata.get("_score", 0.0))

    def with_score(self, score: float) -> "Document":
        self.metadata["_score"] = score
        return self

    @property
    def sub_indexes(self) -> List[str]:
        return list(self.metadata.get("_sub_indexes", []))

    def with_sub_indexes(self, indexes: List[str]) -> "Document":
        self.metadata["_sub_indexes"] = list(indexes)
        return self

    @property
    def dense_vector(self) -> Optional[List[float]]:
        return self.metadata.get("_dense_vector")

    def with_dense_vector(self, vector: List[float]) -> "Document":
        self.metadata["_dense_vector"] = list(vector)
        return self

    def __str__(self) -> str:
        return self.content


@dataclass
class Source:
    """Location a loader reads documents from."""

    uri: str = ""
