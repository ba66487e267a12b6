from math import degrees, pi

import pytest

from gapscout.core.format import (
    format_area,
    format_currency,
    format_distance,
    format_number,
    format_percent,
)
from gapscout.core.geo import (
    EARTH_RADIUS_M,
    GeoPoint,
    circle_intersection_area,
    circles_overlap,
    haversine_m,
    meters_to_miles,
    miles_to_meters,
)


def _north_of(p: GeoPoint, meters: float) -> GeoPoint:
    return GeoPoint(lat=p.lat + degrees(meters / EARTH_RADIUS_M), lng=p.lng)


AUSTIN = GeoPoint(lat=30.2672, lng=-97.7431)


def test_haversine_is_zero_for_same_point():
    assert haversine_m(AUSTIN, AUSTIN) == 0


def test_haversine_along_meridian_matches_arc_length():
    other = _north_of(AUSTIN, 1000)
    assert haversine_m(AUSTIN, other) == pytest.approx(1000, abs=1e-6)


def test_distance_and_area_are_symmetric():
    a = AUSTIN
    b = GeoPoint(lat=30.2750, lng=-97.7300)
    assert haversine_m(a, b) == pytest.approx(haversine_m(b, a))
    assert circle_intersection_area(a, 1500, b, 900) == pytest.approx(
        circle_intersection_area(b, 900, a, 1500)
    )


def test_disjoint_circles_do_not_overlap():
    far = _north_of(AUSTIN, 10_000)
    assert circles_overlap(AUSTIN, 1000, far, 1000) is False
    assert circle_intersection_area(AUSTIN, 1000, far, 1000) == 0


def test_tangent_circles_do_not_overlap():
    other = _north_of(AUSTIN, 3000)
    d = haversine_m(AUSTIN, other)
    assert circles_overlap(AUSTIN, d / 2, other, d / 2) is False
    assert circle_intersection_area(AUSTIN, d / 2, other, d / 2) == 0


def test_contained_circle_area_is_smaller_circle():
    inner = _north_of(AUSTIN, 100)
    assert circle_intersection_area(AUSTIN, 2000, inner, 500) == pytest.approx(pi * 500**2)
    assert circle_intersection_area(AUSTIN, 1000, AUSTIN, 1500) == pytest.approx(pi * 1000**2)


def test_partial_overlap_area_is_strictly_between_bounds():
    other = _north_of(AUSTIN, 1000)
    assert circles_overlap(AUSTIN, 2000, other, 2000) is True
    area = circle_intersection_area(AUSTIN, 2000, other, 2000)
    assert 0 < area < pi * 2000**2


def test_equal_circles_lens_area_matches_closed_form():
    # Two equal circles at distance d: 2 r^2 acos(d / 2r) - (d / 2) sqrt(4 r^2 - d^2)
    from math import acos, sqrt

    other = _north_of(AUSTIN, 1000)
    d = haversine_m(AUSTIN, other)
    r = 2000
    expected = 2 * r**2 * acos(d / (2 * r)) - (d / 2) * sqrt(4 * r**2 - d**2)
    assert circle_intersection_area(AUSTIN, r, other, r) == pytest.approx(expected, rel=1e-9)


def test_mile_conversion_uses_fixed_constant():
    assert miles_to_meters(1) == 1609.34
    assert meters_to_miles(1609.34) == pytest.approx(1.0)
    assert miles_to_meters(5) == pytest.approx(8046.7)


@pytest.mark.parametrize(
    ("meters", "expected"),
    [
        (350, "350m"),
        (1200, "1.2km"),
        (3218.68, "2.0 miles"),
    ],
)
def test_format_distance_picks_unit_by_scale(meters, expected):
    assert format_distance(meters) == expected


def test_format_area_picks_unit_by_scale():
    assert format_area(5000) == "5000 m²"
    assert format_area(250_000) == "25.0 hectares"
    assert format_area(2_589_988.11 * 3) == "3.00 sq miles"


def test_census_figures_render_zero_as_not_available():
    assert format_currency(0) == "N/A"
    assert format_number(0) == "N/A"
    assert format_percent(0) == "N/A"

    assert format_currency(65000) == "$65,000"
    assert format_number(4321) == "4,321"
    assert format_percent(30) == "30.0%"


@pytest.mark.parametrize("eps", [1e-6, 1e-8, 1e-9, 1e-10, 1e-11, 1e-12, 1e-13])
@pytest.mark.parametrize("share", [0.5, 0.137, 0.9])
def test_area_stays_within_bounds_near_outer_tangency(eps, share):
    other = _north_of(AUSTIN, 7321.9)
    d = haversine_m(AUSTIN, other)
    total = d / (1 - eps)
    r1, r2 = total * share, total * (1 - share)

    area = circle_intersection_area(AUSTIN, r1, other, r2)

    assert 0 <= area <= pi * min(r1, r2) ** 2


@pytest.mark.parametrize("eps", [1e-6, 1e-8, 1e-9, 1e-10, 1e-11, 1e-12, 1e-13])
@pytest.mark.parametrize("small", [250.0, 2688.15, 16948.83])
def test_area_stays_within_bounds_near_inner_tangency(eps, small):
    other = _north_of(AUSTIN, 1234.5)
    d = haversine_m(AUSTIN, other)
    large = small + d / (1 + eps)

    area = circle_intersection_area(AUSTIN, small, other, large)

    assert 0 <= area <= pi * small**2
