"""Unit tests for CursorPaginator."""
from datetime import datetime, timezone

import pytest

from processor.pagination import (
    CursorPaginator,
    DESCENDING,
    InvalidCursorError,
    KeysetFilter,
    build_sort_key,
)

ID_A = 'b' * 32
ID_B = 'a' * 32


def run_query(records, query):
    """Apply a PageQuery to an in-memory collection."""
    matching = [
        record for record in records
        if query.filter is None or query.filter.matches(record.start_millis, record.event_id)
    ]
    matching.sort(key=lambda record: (record.start_millis, record.event_id), reverse=True)
    return matching[:query.limit]


@pytest.fixture
def paginator():
    return CursorPaginator()


@pytest.fixture
def collection(record_factory):
    """Twelve records where several share a start date."""
    records = []
    for i in range(12):
        records.append(record_factory(
            day=1 + i // 3,
            title=f'Event {i}',
            event_id=f'{i:032x}'
        ))
    return records


class TestEffectiveLimit:
    """Test cases for page size clamping."""

    @pytest.mark.parametrize('requested, expected', [
        (None, 20),
        ('', 20),
        ('abc', 20),
        ('nan', 20),
        ('inf', 20),
        ('1', 1),
        ('20', 20),
        ('55', 55),
        ('100', 100),
        ('500', 100),
        ('0', 1),
        ('-5', 1),
        ('2.9', 2),
        (' 7 ', 7),
    ])
    def test_effective_limit(self, paginator, requested, expected):
        assert paginator.effective_limit(requested) == expected

    def test_build_query_uses_clamped_limit(self, paginator):
        assert paginator.build_query(limit='500').limit == 100
        assert paginator.build_query().limit == 20


class TestBuildQuery:
    """Test cases for query construction."""

    def test_first_page_has_no_filter(self, paginator):
        query = paginator.build_query()

        assert query.filter is None
        assert query.sort == (('start_date', DESCENDING), ('event_id', DESCENDING))

    def test_empty_cursor_is_first_page(self, paginator):
        assert paginator.build_query(cursor='').filter is None

    def test_cursor_parsed_into_filter(self, paginator):
        query = paginator.build_query(cursor=f'1614556800000_{ID_A}')

        assert query.filter == KeysetFilter(
            start_date=datetime(2021, 3, 1, tzinfo=timezone.utc),
            event_id=ID_A
        )

    @pytest.mark.parametrize('cursor', [
        'abc',
        '1614556800000',
        f'_{ID_A}',
        '1614556800000_',
        f'abc_{ID_A}',
        f'-1_{ID_A}',
        f'1.5_{ID_A}',
        f'99999999999999_{ID_A}',
        '1614556800000_not-an-id',
        f'1614556800000_{ID_A.upper()}',
        f'1614556800000_{ID_A}_extra',
        f'1614556800000_{ID_A}\n',
    ])
    def test_malformed_cursor_rejected(self, paginator, cursor):
        with pytest.raises(InvalidCursorError):
            paginator.build_query(cursor=cursor)

    def test_invalid_cursor_is_value_error(self):
        assert issubclass(InvalidCursorError, ValueError)


class TestKeysetFilter:
    """Test cases for the keyset predicate."""

    def test_matches_strictly_after_cursor(self):
        keyset = KeysetFilter(start_date=datetime(2021, 3, 1, tzinfo=timezone.utc), event_id=ID_A)
        millis = keyset.start_millis

        assert keyset.matches(millis - 1, 'f' * 32)
        assert keyset.matches(millis, ID_B)
        assert not keyset.matches(millis, ID_A)
        assert not keyset.matches(millis, 'c' * 32)
        assert not keyset.matches(millis + 1, '0' * 32)

    def test_sort_key_order_matches_predicate(self):
        """Test that comparing sort keys agrees with the OR predicate."""
        keyset = KeysetFilter(start_date=datetime(2021, 3, 1, tzinfo=timezone.utc), event_id=ID_A)
        millis = keyset.start_millis

        for candidate_millis in (5, millis - 1000, millis, millis + 1):
            for candidate_id in (ID_B, ID_A, 'c' * 32):
                expected = keyset.matches(candidate_millis, candidate_id)
                assert (build_sort_key(candidate_millis, candidate_id) < keyset.sort_key) == expected

    def test_sort_key_rejects_out_of_range_dates(self):
        with pytest.raises(ValueError):
            build_sort_key(-1, ID_A)


class TestNextCursor:
    """Test cases for next cursor derivation."""

    def test_empty_page_has_no_next_cursor(self, paginator):
        assert paginator.next_cursor([]) is None

    def test_next_cursor_built_from_last_item(self, paginator, record_factory):
        page = [
            record_factory(day=2, event_id=ID_A),
            record_factory(day=1, event_id=ID_B)
        ]

        assert paginator.next_cursor(page) == f'1614556800000_{ID_B}'

    def test_unsaved_record_cannot_be_a_cursor(self, paginator, record_factory):
        with pytest.raises(ValueError):
            paginator.next_cursor([record_factory()])


class TestPagination:
    """Property-style tests walking a whole collection."""

    def test_ties_sorted_by_id_and_cursor_reaches_next(self, paginator, record_factory):
        """Two records at the same instant: A > B sorts [A, B], cursor from A yields B."""
        record_a = record_factory(title='A', event_id=ID_A)
        record_b = record_factory(title='B', event_id=ID_B)
        records = [record_b, record_a]

        first_page = run_query(records, paginator.build_query(limit='1'))
        assert first_page == [record_a]
        assert [r.event_id for r in run_query(records, paginator.build_query())] == [ID_A, ID_B]

        second_page = run_query(records, paginator.build_query(paginator.next_cursor(first_page), '1'))
        assert [r.event_id for r in second_page] == [ID_B]

    def test_cursor_excludes_record_and_everything_before(self, paginator, collection):
        ordered = run_query(collection, paginator.build_query(limit='100'))

        for position, record in enumerate(ordered):
            cursor = paginator.next_cursor([record])
            remaining = run_query(collection, paginator.build_query(cursor, '100'))
            assert remaining == ordered[position + 1:]

    @pytest.mark.parametrize('page_size', [1, 2, 3, 5, 12, 100])
    def test_pages_have_no_gaps_or_overlap(self, paginator, collection, page_size):
        ordered = run_query(collection, paginator.build_query(limit='100'))
        seen = []
        cursor = None

        while True:
            page = run_query(collection, paginator.build_query(cursor, str(page_size)))
            cursor = paginator.next_cursor(page)
            if cursor is None:
                break
            assert len(page) <= page_size
            seen.extend(page)

        assert [r.event_id for r in seen] == [r.event_id for r in ordered]
