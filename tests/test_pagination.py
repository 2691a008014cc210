"""
Tests for querykit.query.pagination - page math and result containers.
"""

from dataclasses import dataclass

import pytest

from querykit.exceptions import QueryValidationError
from querykit.query import PageMeta, PageWindow, PagedList, paginate, total_pages


class TestTotalPages:
    """Tests for the page count formula."""

    @pytest.mark.parametrize("total,size,expected", [
        (0, 10, 1),
        (5, 10, 1),
        (10, 10, 1),
        (11, 10, 2),
        (25, 10, 3),
        (30, 10, 3),
        (1, 1, 1),
    ])
    def test_total_pages(self, total, size, expected):
        assert total_pages(total, size) == expected


class TestPageWindow:
    """Tests for PageWindow."""

    def test_middle_page(self):
        window = PageWindow(2, 10, 25)
        assert window.skip == 10
        assert window.elements_in_page == 10
        assert window.total_pages == 3

    def test_last_partial_page(self):
        window = PageWindow(3, 10, 25)
        assert window.skip == 20
        assert window.elements_in_page == 5
        assert not window.is_past_end

    def test_past_the_end(self):
        window = PageWindow(4, 10, 25)
        assert window.elements_in_page == 0
        assert window.is_past_end
        meta = window.meta()
        assert meta.page_number == 4
        assert meta.total_pages == 3

    def test_empty_result(self):
        meta = PageWindow(1, 10, 0).meta()
        assert meta == PageMeta(page_number=1, page_size=10, elements_in_page=0,
                                total_pages=1, total_elements=0)

    def test_meta_uses_actual_count(self):
        assert PageWindow(1, 10, 25).meta(elements_in_page=7).elements_in_page == 7

    def test_invalid_page_size(self):
        with pytest.raises(QueryValidationError):
            PageWindow(1, 0, 10)

    def test_invalid_page_number(self):
        with pytest.raises(QueryValidationError):
            PageWindow(0, 10, 10)


class TestPaginate:
    """Tests for slicing materialized sequences."""

    def test_pages_cover_everything_once(self):
        items = list(range(25))
        seen = []
        for number in range(1, 4):
            seen.extend(paginate(items, number, 10).elements)
        assert seen == items

    def test_page_contents(self):
        page = paginate(list(range(25)), 3, 10)
        assert page.elements == [20, 21, 22, 23, 24]
        assert page.page_meta.elements_in_page == 5
        assert page.page_meta.total_elements == 25


@dataclass
class Item:
    id: int
    name: str


class WithToDict:
    def to_dict(self):
        return {"custom": True}


class TestPagedList:
    """Tests for PagedList."""

    def test_to_dict_shape(self):
        page = paginate([Item(1, "a"), Item(2, "b")], 1, 10)
        data = page.to_dict()
        assert data == {
            "pageMeta": {
                "pageNumber": 1,
                "pageSize": 10,
                "elementsInPage": 2,
                "totalPages": 1,
                "totalElements": 2,
            },
            "elements": [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}],
        }

    def test_to_dict_custom_serializer(self):
        page = paginate([Item(1, "a")], 1, 10)
        assert page.to_dict(lambda i: i.name)["elements"] == ["a"]

    def test_to_dict_prefers_to_dict(self):
        page = paginate([WithToDict()], 1, 10)
        assert page.to_dict()["elements"] == [{"custom": True}]

    def test_container_protocol(self):
        page = paginate([1, 2, 3], 1, 2)
        assert len(page) == 2
        assert list(page) == [1, 2]
        assert page[0] == 1
        assert page
        assert page.has_next

    def test_map(self):
        page = paginate([1, 2, 3], 1, 10).map(lambda x: x * 10)
        assert page.elements == [10, 20, 30]
        assert page.page_meta.total_elements == 3

    def test_empty(self):
        page = PagedList.empty(2, 5)
        assert not page
        assert page.page_meta.page_number == 2
        assert page.page_meta.total_pages == 1
