"""
A small library domain used across the tests.

Plain dataclasses; the SQLAlchemy equivalent lives in library_orm.py and
is seeded from the same data.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import ClassVar, List, Optional


class Genre(Enum):
    FICTION = "fiction"
    SCIENCE = "science"
    HISTORY = "history"
    POETRY = "poetry"


@dataclass
class Publisher:
    id: int
    name: str
    country: Optional[str] = None


@dataclass
class Category:
    id: int
    name: str
    publisher: Optional[Publisher] = None
    books: List["Book"] = field(default_factory=list)


@dataclass
class Author:
    id: int
    first_name: str
    last_name: str
    birth_date: Optional[date] = None
    country: Optional[str] = None


@dataclass
class Review:
    id: int
    rating: int
    comment: str


@dataclass
class Book:
    id: int
    title: str
    isbn: str
    page_count: int
    publication_date: datetime
    language: str
    is_available: bool
    price: Decimal
    genre: Genre
    loan_period: timedelta = timedelta(days=14)
    subtitle: Optional[str] = None
    author: Optional[Author] = None
    category: Optional[Category] = None
    reviews: List[Review] = field(default_factory=list)

    shelf_prefix: ClassVar[str] = "LIB"


LANGUAGES = ["English", "French", "German", "english (US)"]


def make_library(count: int = 25) -> List[Book]:
    """
    Deterministic books 0..count-1.

    - title "Book NN" (unique), isbn "978-NNNN"
    - page_count = 100 + (i * 37) % 700
    - language cycles through LANGUAGES
    - is_available unless i is a multiple of 3
    - every 5th book has no author; the rest alternate between two authors
    - every book with odd i has a subtitle
    """
    publishers = [
        Publisher(1, "Penguin", "UK"),
        Publisher(2, "Gallimard", "France"),
    ]
    categories = [
        Category(1, "Novels", publishers[0]),
        Category(2, "Essays", publishers[1]),
        Category(3, "Uncatalogued", None),
    ]
    authors = [
        Author(1, "Ursula", "Le Guin", date(1929, 10, 21), "USA"),
        Author(2, "Italo", "Calvino", date(1923, 10, 15), "Italy"),
    ]
    genres = list(Genre)

    books = []
    for i in range(count):
        book = Book(
            id=i + 1,
            title=f"Book {i:02d}",
            isbn=f"978-{i:04d}",
            page_count=100 + (i * 37) % 700,
            publication_date=datetime(2000 + i % 20, 1 + i % 12, 1 + i % 28, 12, 0),
            language=LANGUAGES[i % len(LANGUAGES)],
            is_available=i % 3 != 0,
            price=Decimal("9.99") + i,
            genre=genres[i % len(genres)],
            subtitle=f"Volume {i}" if i % 2 else None,
            author=None if i % 5 == 0 else authors[i % 2],
            category=categories[i % 3],
            reviews=[Review(i * 10 + r, 1 + (i + r) % 5, f"review {r}") for r in range(i % 3)],
        )
        book.category.books.append(book)
        books.append(book)
    return books
