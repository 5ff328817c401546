import json

import pytest

from wound_optics.ip_types import Point
from wound_optics.polygon import (
    area_pixels,
    outline_from_json,
    outline_to_json,
    to_physical_area,
    to_physical_area_linear,
)


def test_unit_square_area():
    assert area_pixels([(0, 0), (1, 0), (1, 1), (0, 1)]) == 1.0


def test_triangle_area():
    assert area_pixels([(0, 0), (4, 0), (0, 3)]) == 6.0


@pytest.mark.parametrize("points", [[], [(0, 0)], [(0, 0), (5, 5)], None])
def test_fewer_than_three_points_is_zero(points):
    assert area_pixels(points) == 0.0


def test_area_invariant_to_rotation_and_reversal():
    pts = [(2, 1), (9, 3), (11, 8), (6, 12), (1, 7)]
    expected = area_pixels(pts)
    for k in range(len(pts)):
        rotated = pts[k:] + pts[:k]
        assert area_pixels(rotated) == pytest.approx(expected)
        assert area_pixels(list(reversed(rotated))) == pytest.approx(expected)


def test_area_accepts_point_objects_and_dicts():
    assert area_pixels([Point(0, 0), Point(2, 0), Point(2, 2), Point(0, 2)]) == 4.0
    assert area_pixels([{"x": 0, "y": 0}, {"x": 3, "y": 0}, {"x": 0, "y": 2}]) == 3.0


def test_collinear_polygon_has_zero_area():
    assert area_pixels([(0, 0), (1, 1), (2, 2)]) == 0.0


def test_physical_area_squares_linear_factor():
    assert to_physical_area(10000.0, 0.01) == pytest.approx(1.0)


def test_physical_area_linear_factor_is_not_squared():
    assert to_physical_area_linear(10000.0, 0.01) == pytest.approx(100.0)


def test_outline_json_roundtrip_shapes():
    pts = [(1.5, 2.0), (3.0, 4.0), (5.0, 0.5)]
    text = outline_to_json(pts)
    assert json.loads(text)["points"][0] == {"x": 1.5, "y": 2.0}
    assert outline_from_json(text) == pts


def test_outline_from_json_accepts_bare_pairs():
    assert outline_from_json("[[0, 0], [4, 0], [0, 3]]") == [(0.0, 0.0), (4.0, 0.0), (0.0, 3.0)]


@pytest.mark.parametrize("text", [None, "", "   ", "not json", '{"points": [{"x": 1}]}', "[1, 2]"])
def test_outline_from_json_tolerates_bad_input(text):
    assert outline_from_json(text) == []
