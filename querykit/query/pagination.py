"""
Pagination math and paged result containers.

Page numbers start at 1. The page count of an empty or short result is 1,
so a client can always request page 1. Pages past the end are valid and
empty; their metadata echoes the requested page number.

Serialized shape:

    {
      "pageMeta": {"pageNumber": 3, "pageSize": 10, "elementsInPage": 5,
                   "totalPages": 3, "totalElements": 25},
      "elements": [...]
    }
"""

import dataclasses
from dataclasses import dataclass, field
from typing import (
    Any, Callable, Dict, Generic, Iterator, List, Optional, Sequence, TypeVar, Union
)

from querykit.exceptions import QueryValidationError

T = TypeVar('T')


def total_pages(total_elements: int, page_size: int) -> int:
    """Number of pages; 1 when everything fits on one page (or nothing matched)."""
    if total_elements < page_size:
        return 1
    return total_elements // page_size + (1 if total_elements % page_size else 0)


def page_offset(page_number: int, page_size: int) -> int:
    """Number of elements before the first one of the page."""
    return (page_number - 1) * page_size


def elements_in_page(page_number: int, page_size: int, total_elements: int) -> int:
    """Number of elements the page holds, 0 past the end."""
    return max(0, min(page_size, total_elements - page_offset(page_number, page_size)))


@dataclass(frozen=True)
class PageMeta:
    """Metadata of one returned page."""
    page_number: int
    page_size: int
    elements_in_page: int
    total_pages: int
    total_elements: int

    def to_dict(self) -> Dict[str, int]:
        return {
            'pageNumber': self.page_number,
            'pageSize': self.page_size,
            'elementsInPage': self.elements_in_page,
            'totalPages': self.total_pages,
            'totalElements': self.total_elements,
        }


@dataclass(frozen=True)
class PageWindow:
    """
    One page of a result set of known size.

    Raises QueryValidationError on construction if the page size is not
    positive or the page number is below 1.
    """
    page_number: int
    page_size: int
    total_elements: int = 0

    def __post_init__(self):
        if self.page_size < 1:
            raise QueryValidationError(f"Page size must be positive, got {self.page_size}",
                                       parameter="pageSize")
        if self.page_number < 1:
            raise QueryValidationError(f"Page number must be at least 1, got {self.page_number}",
                                       parameter="pageNumber")
        if self.total_elements < 0:
            raise ValueError(f"Total elements cannot be negative: {self.total_elements}")

    @property
    def skip(self) -> int:
        return page_offset(self.page_number, self.page_size)

    @property
    def total_pages(self) -> int:
        return total_pages(self.total_elements, self.page_size)

    @property
    def elements_in_page(self) -> int:
        return elements_in_page(self.page_number, self.page_size, self.total_elements)

    @property
    def is_past_end(self) -> bool:
        return self.skip >= self.total_elements

    def meta(self, elements_in_page: Optional[int] = None) -> PageMeta:
        """
        Build the page metadata.

        Args:
            elements_in_page: Number of elements actually fetched
                (defaults to the computed page occupancy)
        """
        if elements_in_page is None:
            elements_in_page = self.elements_in_page
        return PageMeta(
            page_number=self.page_number,
            page_size=self.page_size,
            elements_in_page=elements_in_page,
            total_pages=self.total_pages,
            total_elements=self.total_elements,
        )


def serialize_element(item: Any) -> Any:
    """Default element serializer: to_dict(), dataclass fields, or public attributes."""
    if hasattr(item, 'to_dict'):
        return item.to_dict()
    if dataclasses.is_dataclass(item) and not isinstance(item, type):
        return dataclasses.asdict(item)
    if hasattr(item, '__dict__'):
        return {k: v for k, v in vars(item).items() if not k.startswith('_')}
    return item


@dataclass
class PagedList(Generic[T]):
    """
    One page of query results plus its metadata.

    Supports iteration, indexing, length and serialization.
    """
    page_meta: PageMeta
    elements: List[T] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[T]:
        return iter(self.elements)

    def __getitem__(self, idx: Union[int, slice]) -> Union[T, List[T]]:
        return self.elements[idx]

    def __bool__(self) -> bool:
        return len(self.elements) > 0

    @property
    def has_next(self) -> bool:
        return self.page_meta.page_number < self.page_meta.total_pages

    def map(self, func: Callable[[T], Any]) -> "PagedList":
        """Apply a function to each element, keeping the metadata."""
        return PagedList(page_meta=self.page_meta, elements=[func(e) for e in self.elements])

    def to_dict(self, serialize: Optional[Callable[[T], Any]] = None) -> Dict[str, Any]:
        """Serialize to the pageMeta/elements shape."""
        serialize = serialize or serialize_element
        return {
            'pageMeta': self.page_meta.to_dict(),
            'elements': [serialize(e) for e in self.elements],
        }

    @classmethod
    def empty(cls, page_number: int = 1, page_size: int = 10) -> "PagedList[T]":
        """Create an empty page."""
        return cls(page_meta=PageWindow(page_number, page_size, 0).meta(), elements=[])


def paginate(items: Sequence[T], page_number: int = 1, page_size: int = 10) -> PagedList[T]:
    """Cut one page out of an already materialized sequence."""
    window = PageWindow(page_number, page_size, len(items))
    elements = list(items[window.skip:window.skip + page_size])
    return PagedList(page_meta=window.meta(len(elements)), elements=elements)
