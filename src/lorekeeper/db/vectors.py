"""Vector encoding helpers for sqlite-vec float32 columns."""

from __future__ import annotations

import json
import math

from lorekeeper.errors import ValidationError


def to_vec_param(vector: list[float]) -> str:
    """Encode *vector* as the JSON text accepted by sqlite-vec's vec_f32()."""
    return json.dumps([float(v) for v in vector])


def from_vec_json(raw: str | None) -> list[float] | None:
    """Decode the output of vec_to_json() back to a Python list."""
    if raw is None:
        return None
    return [float(v) for v in json.loads(raw)]


def check_vector(vector: list[float], dimensions: int) -> None:
    """Raise ValidationError unless *vector* has *dimensions* finite, non-zero-norm entries."""
    if len(vector) != dimensions:
        raise ValidationError(
            f"Expected a {dimensions}-dimensional vector, got {len(vector)} dimensions."
        )
    if not all(math.isfinite(v) for v in vector):
        raise ValidationError("Vector contains NaN or infinite values.")
    if not any(vector):
        # Cosine distance is undefined for the zero vector.
        raise ValidationError("Vector has zero norm.")


def distance_to_similarity(distance: float) -> float:
    """Cosine similarity from a sqlite-vec cosine distance."""
    return 1.0 - distance
