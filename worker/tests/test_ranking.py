import pytest

from rankgrid.core.models import Coordinate, PlaceResult
from rankgrid.core.ranking import find_target_rank, lookup_rank, normalize_website

POINT = Coordinate(40.7128, -74.0060)


def _places(*websites):
    return [
        PlaceResult(position=index, title=f"Place {index}", website=website)
        for index, website in enumerate(websites, start=1)
    ]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://www.Example.com/", "example.com"),
        ("http://example.com", "example.com"),
        ("  WWW.example.com//  ", "example.com"),
        ("example.com/locations/nyc/", "example.com/locations/nyc"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_website(raw, expected):
    assert normalize_website(raw) == expected


def test_first_match_wins():
    places = _places("https://other.com", "https://www.example.com/", "http://example.com")
    rank, matched = find_target_rank(places, "example.com")

    assert rank == 2
    assert matched is places[1]


def test_rank_uses_listing_position_not_index():
    places = [PlaceResult(position=7, title="Late", website="example.com")]
    assert find_target_rank(places, "https://example.com")[0] == 7


def test_lookup_rank_returns_places_and_match():
    places = _places(None, "https://example.com")
    calls = []

    def provider(lat, lng, keyword):
        calls.append((lat, lng, keyword))
        return places

    result = lookup_rank(POINT, "coffee shop", "example.com", provider)

    assert calls == [(40.7128, -74.0060, "coffee shop")]
    assert result.rank == 2
    assert result.matched_place.title == "Place 2"
    assert result.places == places
    assert result.error is None


def test_lookup_rank_not_found():
    result = lookup_rank(POINT, "coffee", "example.com", lambda lat, lng, kw: _places("https://other.com"))
    assert result.rank is None
    assert result.matched_place is None
    assert len(result.places) == 1


def test_empty_target_never_ranks():
    result = lookup_rank(POINT, "coffee", "", lambda lat, lng, kw: _places("https://example.com"))
    assert result.rank is None
    assert len(result.places) == 1


def test_provider_failure_becomes_error(caplog):
    def provider(lat, lng, keyword):
        raise TimeoutError("upstream timed out")

    with caplog.at_level("WARNING"):
        result = lookup_rank(POINT, "coffee", "example.com", provider)

    assert result.error == "upstream timed out"
    assert result.rank is None
    assert result.places == []
    assert "Ranking lookup failed" in caplog.text
