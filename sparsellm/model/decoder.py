"""
SparseLLM Similarity Decoder
==============================
Maps the final hidden state back to a vocabulary id by comparing it with
every known token embedding and picking the closest. Token vectors double
as classifier weights, so there is no separate output matrix and the
"logit" space grows with the vocabulary.

Tie-break: the smallest vocabulary id wins (argmax returns the first
maximal index and row ``v`` of the table is id ``v``). An all-zero hidden
state therefore decodes to id 0 instead of raising.
"""

from __future__ import annotations

import logging
from typing import Optional

import torch

from sparsellm.config import SIMILARITY_MODES
from sparsellm.model.embedding import EmbeddingTable, InputProjection

logger = logging.getLogger(__name__)

_EPS = 1e-12


class SimilarityDecoder:
    """
    Embedding-similarity projection.

    Parameters
    ----------
    similarity : str
        "cosine" (default) or "dot".
    """

    def __init__(self, similarity: str = "cosine"):
        if similarity not in SIMILARITY_MODES:
            raise ValueError(
                f"Unknown similarity: '{similarity}'. "
                f"Choose from: {', '.join(SIMILARITY_MODES)}"
            )
        self.similarity = similarity

    def logits(self, hidden: torch.Tensor, candidates: torch.Tensor) -> torch.Tensor:
        """
        Similarity of ``hidden`` to every candidate row.

        Parameters
        ----------
        hidden : torch.Tensor
            Shape (hidden_dim,).
        candidates : torch.Tensor
            Shape (n_candidates, hidden_dim).

        Returns
        -------
        torch.Tensor
            Shape (n_candidates,).
        """
        scores = candidates @ hidden
        if self.similarity == "cosine":
            row_norms = torch.linalg.vector_norm(candidates, dim=-1)
            hidden_norm = torch.linalg.vector_norm(hidden)
            scores = scores / (row_norms * hidden_norm).clamp_min(_EPS)
        return scores

    def decode(
        self,
        hidden: torch.Tensor,
        table: EmbeddingTable,
        projection: InputProjection,
    ) -> Optional[int]:
        """
        Pick the vocabulary id whose embedding is most similar to ``hidden``.

        Returns
        -------
        int or None
            The winning vocabulary id, or None when the table is empty.
        """
        embeddings = table.snapshot()
        if embeddings.shape[0] == 0:
            logger.debug("Decoder called with an empty embedding table")
            return None

        scores = self.logits(hidden, projection(embeddings))
        return int(torch.argmax(scores).item())

    def __repr__(self) -> str:
        return f"SimilarityDecoder(similarity={self.similarity})"
