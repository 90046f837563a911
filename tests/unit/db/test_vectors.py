"""Tests for sqlite-vec vector encoding helpers."""

from __future__ import annotations

import math

import pytest

from lorekeeper.db.vectors import (
    check_vector,
    distance_to_similarity,
    from_vec_json,
    to_vec_param,
)
from lorekeeper.errors import ValidationError


def test_round_trip_through_sqlite_vec(tmp_db):
    raw = tmp_db.execute(
        "SELECT vec_to_json(vec_f32(?))", (to_vec_param([0.5, -1.0, 2.0]),)
    ).fetchone()[0]
    assert from_vec_json(raw) == pytest.approx([0.5, -1.0, 2.0])


def test_from_vec_json_none():
    assert from_vec_json(None) is None


def test_check_vector_accepts_valid():
    check_vector([0.1, 0.2, 0.3], 3)


def test_check_vector_wrong_dimensions():
    with pytest.raises(ValidationError, match="3-dimensional"):
        check_vector([0.1, 0.2], 3)


@pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
def test_check_vector_non_finite(bad):
    with pytest.raises(ValidationError, match="NaN or infinite"):
        check_vector([0.1, bad, 0.3], 3)


def test_check_vector_zero_norm():
    with pytest.raises(ValidationError, match="zero norm"):
        check_vector([0.0, 0.0, 0.0], 3)


def test_cosine_distance_to_similarity(tmp_db):
    distance = tmp_db.execute(
        "SELECT vec_distance_cosine(vec_f32(?), vec_f32(?))",
        (to_vec_param([1.0, 0.0, 0.0]), to_vec_param([0.8, 0.6, 0.0])),
    ).fetchone()[0]
    assert distance_to_similarity(distance) == pytest.approx(0.8, abs=1e-6)
