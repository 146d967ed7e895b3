"""
Deterministic bag-of-character-positions embedding.

This is a hash, not a semantic embedding: two texts sharing characters at the same
word positions land near each other regardless of meaning. It only populates the
document similarity field and gives no retrieval quality guarantees.
"""

import math
from typing import List, Sequence

EMBEDDING_DIMENSION = 128


def generate_embedding(text: str, dimension: int = EMBEDDING_DIMENSION) -> List[float]:
    """
    Embed text into a fixed-length, L2-normalized vector.

    Args:
        text: Text to embed
        dimension: Vector length

    Returns:
        List of ``dimension`` floats; the zero vector when no characters were hashed
    """
    vector = [0.0] * dimension

    for word in text.lower().split():
        for i, char in enumerate(word):
            vector[(ord(char) * (i + 1) * 7) % dimension] += 1

    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return vector
    return [value / norm for value in vector]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors, 0.0 when either is the zero vector."""
    if len(a) != len(b):
        raise ValueError(f'Vector dimensions differ: {len(a)} != {len(b)}')

    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / (norm_a * norm_b)
