"""
sparsellm.data — Tokenization
==============================
    **Tokenizer** (`tokenizer.py`):
       Splits prompts on whitespace and resolves each token to a stable id
       in an append-only vocabulary owned by one engine.

Information Flow:
    Prompt text
        → WhitespaceTokenizer (split, keep casing/punctuation)
        → Vocabulary (first-seen ids)
        → Token(text, index, vocabulary_id)
"""

from sparsellm.data.tokenizer import Vocabulary, WhitespaceTokenizer
