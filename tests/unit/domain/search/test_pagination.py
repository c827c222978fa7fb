"""Unit tests for keyset pagination."""

import math

import pytest
from hypothesis import HealthCheck, given
from hypothesis import settings as hypothesis_settings
from hypothesis import strategies as st

from polaris.config.settings import Settings
from polaris.domain.search.pagination import (
    PaginationError,
    SearchSession,
    SearchState,
    format_cursor,
)

SEARCH_QUERY = '{"$match": {"title": "{{ search }}"}}'


def make_session(settings, **kwargs):
    kwargs.setdefault("search_query", SEARCH_QUERY)
    kwargs.setdefault("default_query", "{}")
    return SearchSession(kwargs.pop("state", None), settings=settings, **kwargs)


def fetch(session, client, index="pos_book"):
    body = session.build_request()
    return session.record_response(client.search(index, body))


@pytest.mark.unit
class TestFormatCursor:
    def test_forward_uses_last_hit(self):
        assert format_cursor([[3, "c"], [2, "b"]], backward=False) == ["after", 2, "b"]

    def test_backward_uses_first_hit(self):
        assert format_cursor([[3, "c"], [2, "b"]], backward=True) == ["before", 3, "c"]

    def test_empty_page(self):
        with pytest.raises(PaginationError):
            format_cursor([], backward=False)

    def test_unsorted_hits(self):
        with pytest.raises(PaginationError):
            format_cursor([[]], backward=False)


@pytest.mark.unit
class TestSearchState:
    def test_defaults(self):
        state = SearchState.from_query(None, default_filters=['{"type": "book"}'])

        assert state.current == 1
        assert state.size == 20
        assert state.cursor is None
        assert state.filters == ['{"type": "book"}']
        assert state.typed_search == ""

    def test_bad_values_are_repaired(self):
        state = SearchState.from_query(
            {"seso_current": "0", "seso_size": "lots", "seso_order": "sideways", "seso_paginate": '["middle", 1]'}
        )

        assert state.current == 1
        assert state.size == 20
        assert state.order == "asc"
        assert state.cursor is None

    def test_reads_query_parameters(self):
        state = SearchState.from_query(
            {
                "seso_current": "3",
                "seso_size": "5",
                "seso_sort": "title",
                "seso_order": "desc",
                "seso_paginate": '["after", "Dune", "42"]',
                "seso_filter": '{"type": "book"}',
                "s": "  dune ",
            }
        )

        assert state.current == 3
        assert state.size == 5
        assert (state.sort, state.order) == ("title", "desc")
        assert state.cursor == ["after", "Dune", "42"]
        assert state.filters == ['{"type": "book"}']
        assert state.typed_search == "dune"

    def test_explicit_empty_filters_override_defaults(self):
        state = SearchState.from_query({"seso_filter": []}, default_filters=['{"type": "book"}'])
        assert state.filters == []

    def test_to_query_round_trips(self):
        state = SearchState(current=2, cursor=["before", 1, "a"], sort="title", order="desc", size=5)
        assert SearchState.from_query(state.to_query()) == state


@pytest.mark.unit
class TestSearchSession:
    def test_sort_terms_end_with_tie_breaker(self, settings):
        session = make_session(settings, default_sorts=[{"created": "desc"}])
        session.sort("title")

        assert session.sort_terms() == [{"title": "asc"}, {"created": "desc"}, {"_id": "desc"}]

    def test_tie_breaker_is_not_repeated(self, settings):
        session = make_session(settings, default_sorts=[{"_id": "asc"}])
        assert session.sort_terms() == [{"_id": "asc"}]

    def test_sort_toggles_and_resets(self, settings):
        session = make_session(settings, state=SearchState(current=4, cursor=["after", 1]))

        session.sort("title")
        assert (session.state.sort, session.state.order) == ("title", "asc")
        assert session.state.current == 1
        assert session.state.cursor is None

        session.sort("title")
        assert session.state.order == "desc"

        session.sort("year")
        assert session.state.order == "asc"

    def test_invalid_sort_order(self, settings):
        with pytest.raises(ValueError):
            make_session(settings).sort("title", "up")

    def test_resize_resets(self, settings):
        session = make_session(settings, state=SearchState(current=3, cursor=["after", 1]))
        session.resize(50)

        assert session.state.size == 50
        assert session.state.current == 1
        assert session.state.cursor is None

        with pytest.raises(ValueError):
            session.resize(0)

    def test_nothing_to_search(self, settings):
        session = make_session(settings, default_query=None)

        assert session.build_request() is None
        assert not session.in_flight

    def test_request_body(self, settings):
        session = make_session(settings, state=SearchState(size=5, filters=['{"type": "book"}']))

        body = session.build_request("dune")

        assert body == {
            "size": 5,
            "sort": [{"_id": "desc"}],
            "where": {"$and": [{"type": "book"}, {"$match": {"title": "dune"}}]},
        }
        assert session.in_flight
        assert session.state.typed_search == "dune"

    def test_one_request_in_flight(self, settings):
        session = make_session(settings)
        session.build_request()

        with pytest.raises(PaginationError):
            session.build_request()

        session.abort()
        assert session.build_request() is not None

    def test_change_page_needs_a_response(self, settings):
        with pytest.raises(PaginationError):
            make_session(settings).change_page(2)

    def test_change_page_refused_while_in_flight(self, settings, fake_client):
        session = make_session(settings)
        fetch(session, fake_client)
        session.build_request()

        with pytest.raises(PaginationError):
            session.change_page(2)

    def test_same_page_is_noop(self, settings, fake_client):
        session = make_session(settings)
        fetch(session, fake_client)

        assert session.change_page(1).cursor is None

    @pytest.mark.parametrize("page", [3, 0, -1])
    def test_only_adjacent_pages_are_reachable(self, settings, page):
        session = make_session(settings)
        session.build_request()
        session.record_response({"hits": [{"sort": ["a", "3"]}, {"sort": ["b", "2"]}], "total": 10})

        with pytest.raises(PaginationError):
            session.change_page(page)
        assert session.state.current == 1
        assert session.state.cursor is None

    def test_cursor_from_recorded_hits(self, settings):
        session = make_session(settings)
        session.build_request()
        session.record_response({"hits": [{"sort": ["a", "3"]}, {"sort": ["b", "2"]}], "total": 10})

        session.change_page(2)
        assert session.state.cursor == ["after", "b", "2"]
        assert session.build_request()["search_after"] == ["b", "2"]

        session.record_response({"hits": [{"sort": ["c", "9"]}, {"sort": ["d", "1"]}], "total": 10})
        session.change_page(1)
        assert session.state.cursor == ["before", "c", "9"]
        assert session.build_request()["search_before"] == ["c", "9"]


@pytest.mark.unit
def test_pages_through_ties_without_gaps(settings, fake_client):
    for position in range(7):
        fake_client.add("pos_book", f"{position:02d}", {"rank": position % 2})

    session = make_session(settings, state=SearchState(size=3))
    session.sort("rank")

    seen = [hit["_id"] for hit in fetch(session, fake_client)]
    for page in (2, 3):
        session.change_page(page)
        seen += [hit["_id"] for hit in fetch(session, fake_client)]

    assert seen == ["06", "04", "02", "00", "05", "03", "01"]


@pytest.mark.property
@hypothesis_settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(
    ranks=st.lists(st.integers(min_value=0, max_value=3), min_size=1, max_size=25),
    size=st.integers(min_value=1, max_value=5),
    order=st.sampled_from(["asc", "desc"]),
)
def test_forward_then_backward_pages_match(index_client_factory, ranks, size, order):
    client = index_client_factory()
    for position, rank in enumerate(ranks):
        client.add("pos_book", f"{position:03d}", {"rank": rank})

    session = make_session(Settings(_env_file=None), state=SearchState(size=size))
    session.sort("rank", order)

    pages = [[hit["_id"] for hit in fetch(session, client)]]
    last_page = math.ceil(len(ranks) / size)
    for page in range(2, last_page + 1):
        session.change_page(page)
        pages.append([hit["_id"] for hit in fetch(session, client)])

    seen = [doc_id for page in pages for doc_id in page]
    expected = sorted(
        (f"{position:03d}" for position in range(len(ranks))),
        key=lambda doc_id: (ranks[int(doc_id)] if order == "asc" else -ranks[int(doc_id)], -int(doc_id)),
    )
    assert seen == expected

    for page in range(last_page - 1, 0, -1):
        session.change_page(page)
        assert [hit["_id"] for hit in fetch(session, client)] == pages[page - 1]
