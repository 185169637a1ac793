"""
SparseLLM Tokenizer
=====================
Splits prompts into whitespace-delimited tokens and resolves each one to a
stable integer id in a growing vocabulary. The vocabulary is SHARED by the
tokenizer, the embedding table and the decoder of one engine. It is the
common "dictionary" that every layer understands.

Why Whitespace Segmentation:
    The engine exists to make routing inspectable, not to model language.
    Whole words (with their punctuation attached: "need." stays "need.")
    make the per-token traces easy to read.

Vocabulary Growth:
    Ids are assigned first-seen, starting at 0. A repeated string always
    reuses its id and the vocabulary never shrinks, so the same word maps
    to the same embedding for the whole process lifetime.

Usage:
    >>> vocab = Vocabulary()
    >>> tok = WhitespaceTokenizer(vocab)
    >>> [t.vocabulary_id for t in tok.tokenize("hello world hello")]
    [0, 1, 0]
"""

from __future__ import annotations

import logging
import threading
from typing import Iterator

from tokenizers import pre_tokenizers

from sparsellm.model.trace import Token

logger = logging.getLogger(__name__)


class Vocabulary:
    """
    Append-only mapping between token text and integer id.

    Stored as an arena: ``_texts[id]`` holds the text, ``_ids`` indexes
    it back. Writes are serialized with a lock so concurrent runs on one
    engine cannot hand out the same id twice.
    """

    def __init__(self):
        self._ids: dict[str, int] = {}
        self._texts: list[str] = []
        self._lock = threading.Lock()

    def id_for(self, text: str) -> int:
        """Return the id for ``text``, assigning the next free id if new."""
        existing = self._ids.get(text)
        if existing is not None:
            return existing

        with self._lock:
            # Re-check: another thread may have added it meanwhile
            existing = self._ids.get(text)
            if existing is not None:
                return existing
            new_id = len(self._texts)
            self._texts.append(text)
            self._ids[text] = new_id

        logger.debug(f"Vocabulary grew to {new_id + 1} entries ('{text}')")
        return new_id

    def text_for(self, vocab_id: int) -> str:
        """
        Return the token text for an id.

        Raises
        ------
        KeyError
            If the id has never been assigned.
        """
        if not 0 <= vocab_id < len(self._texts):
            raise KeyError(f"Unknown vocabulary id: {vocab_id}")
        return self._texts[vocab_id]

    def __contains__(self, text: object) -> bool:
        return text in self._ids

    def __len__(self) -> int:
        return len(self._texts)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._texts))

    def __repr__(self) -> str:
        return f"Vocabulary(size={len(self)})"


class WhitespaceTokenizer:
    """
    Whitespace tokenizer bound to a vocabulary.

    Uses the HuggingFace ``WhitespaceSplit`` pre-tokenizer: runs of
    whitespace separate tokens, everything else (case, punctuation) is
    kept verbatim.

    Parameters
    ----------
    vocabulary : Vocabulary
        The vocabulary to consult and extend.
    """

    def __init__(self, vocabulary: Vocabulary):
        self.vocabulary = vocabulary
        self._splitter = pre_tokenizers.WhitespaceSplit()

    def split(self, text: str) -> list[str]:
        """Split text into token strings without touching the vocabulary."""
        if not isinstance(text, str):
            raise TypeError(f"Expected str, got {type(text).__name__}")

        # Handle empty/whitespace text gracefully
        if not text or not text.strip():
            return []

        return [piece for piece, _ in self._splitter.pre_tokenize_str(text)]

    def tokenize(self, text: str) -> list[Token]:
        """
        Split text and resolve every piece to a vocabulary id.

        Parameters
        ----------
        text : str
            The prompt to tokenize.

        Returns
        -------
        list[Token]
            Tokens in prompt order, indexed from 0. Empty for an empty or
            whitespace-only prompt.
        """
        return [
            Token(text=piece, index=i, vocabulary_id=self.vocabulary.id_for(piece))
            for i, piece in enumerate(self.split(text))
        ]

    def __repr__(self) -> str:
        return f"WhitespaceTokenizer(vocab_size={len(self.vocabulary)})"
