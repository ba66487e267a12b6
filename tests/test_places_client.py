import pytest

from gapscout.ingestion.places_client import normalize_place_type, parse_place


def _raw(**updates):
    raw = {
        "place_id": "ChIJ-abc",
        "name": "Bean There",
        "geometry": {"location": {"lat": 30.2672, "lng": -97.7431}},
        "vicinity": "100 Congress Ave",
        "rating": 4.4,
        "types": ["cafe", "food"],
    }
    raw.update(updates)
    return raw


def test_parse_place_reads_core_fields():
    business = parse_place(_raw())

    assert business is not None
    assert business.place_id == "ChIJ-abc"
    assert business.location.lat == pytest.approx(30.2672)
    assert business.rating == pytest.approx(4.4)
    assert business.categories == ["cafe", "food"]


@pytest.mark.parametrize("place_id", [None, ""])
def test_parse_place_skips_results_without_place_id(place_id):
    assert parse_place(_raw(place_id=place_id)) is None

    raw = _raw()
    del raw["place_id"]
    assert parse_place(raw) is None


def test_parse_place_skips_results_without_location():
    assert parse_place(_raw(geometry={})) is None
    assert parse_place(_raw(geometry={"location": {"lat": "north", "lng": 1}})) is None


def test_parse_place_defaults_missing_name_and_rating():
    business = parse_place(_raw(name=None, rating=None, types=None))

    assert business is not None
    assert business.name == "Unknown"
    assert business.rating is None
    assert business.categories == []


def test_normalize_place_type_replaces_first_space_only():
    assert normalize_place_type("Coffee shop") == "coffee_shop"
    assert normalize_place_type("Car repair shop") == "car_repair shop"
