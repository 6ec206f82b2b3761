"""Request coercion: values are clamped, never rejected."""

import pytest

from catalog_search.models import SearchRequest, SearchResponse, SearchResult, SortOrder


@pytest.mark.parametrize("page", [-100, -1, 0, "0", "-5", None, "abc", ""])
def test_page_below_one_becomes_one(page):
    assert SearchRequest(page=page).page == 1


@pytest.mark.parametrize("limit,expected", [(101, 100), (5000, 100), ("250", 100), (0, 1), (-3, 1), (1, 1), (100, 100), (37, 37)])
def test_limit_is_clamped(limit, expected):
    assert SearchRequest(limit=limit).page_size == expected


def test_defaults():
    request = SearchRequest()

    assert request.query == ""
    assert request.page == 1
    assert request.page_size == 20
    assert request.sort is SortOrder.RELEVANCE
    assert request.city_id == 1
    assert request.user_id is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("name", SortOrder.NAME),
        ("externalId", SortOrder.EXTERNAL_ID),
        ("external_id", SortOrder.EXTERNAL_ID),
        ("POPULARITY", SortOrder.POPULARITY),
        ("price", SortOrder.RELEVANCE),
        (None, SortOrder.RELEVANCE),
    ],
)
def test_sort_is_coerced(raw, expected):
    assert SearchRequest(sort=raw).sort is expected


def test_from_params_keeps_only_recognised_fields():
    request = SearchRequest.from_params(
        {"q": "  кабель ", "page": "3", "limit": "10", "city_id": "7", "user_id": 42, "debug": "1"}
    )

    assert request.query == "кабель"
    assert request.page == 3
    assert request.page_size == 10
    assert request.city_id == 7
    assert request.user_id == "42"
    assert request.offset == 20


def test_failure_envelope_shape():
    result = SearchResult(page=4, page_size=15, error="down", error_code="SERVICE_UNAVAILABLE")

    payload = SearchResponse.from_result(result).model_dump(mode="json")

    assert payload["success"] is False
    assert payload["error_code"] == "SERVICE_UNAVAILABLE"
    assert payload["data"]["products"] == []
    assert payload["data"]["total"] == 0
    assert payload["data"]["page"] == 4
    assert payload["data"]["limit"] == 15
