import pytest

from libratech.exceptions import NotFound
from libratech.library import Library
from libratech.models import Book


def test_add_list_and_get(lib, make_book):
    dune = make_book()
    emma = make_book(title="Emma", author="Jane Austen", category="Classics", quantity=2)

    books = lib.catalog.list_books()
    assert [b.id for b in books] == [dune.id, emma.id]

    found = lib.catalog.get_book(emma.id)
    assert found.title == "Emma"
    assert found.author == "Jane Austen"
    assert found.quantity == 2
    assert lib.catalog.get_book("missing") is None


def test_persistence(db_file):
    first = Library(db_file=db_file)
    book = first.catalog.add_book(Book(title="Persisted", author="Writer", quantity=3))

    reopened = Library(db_file=db_file)
    assert reopened.catalog.get_book(book.id).quantity == 3


def test_add_book_rejects_blank_title(lib):
    with pytest.raises(ValueError):
        lib.catalog.add_book(Book(title="   ", author="Nobody"))


def test_book_rejects_negative_quantity():
    with pytest.raises(ValueError):
        Book(title="Broken", quantity=-1)


def test_description_is_sanitized(lib, make_book):
    book = make_book(description="<b>Spice</b> and <script>sand</script>worms")
    assert "<" not in lib.catalog.get_book(book.id).description


def test_extra_payload_survives_storage(lib, make_book):
    book = make_book(extra={"isbn": "9780441013593", "pages": 412})
    assert lib.catalog.get_book(book.id).extra == {"isbn": "9780441013593", "pages": 412}


def test_list_books_by_category_and_id(lib, make_book):
    dune = make_book()
    make_book(title="Emma", category="Classics")

    assert [b.id for b in lib.catalog.list_books(category="Science Fiction")] == [dune.id]
    assert [b.id for b in lib.catalog.list_books(book_id=dune.id)] == [dune.id]
    assert lib.catalog.list_books(category="Poetry") == []


def test_list_books_quantity_comparisons(lib, make_book):
    none_left = make_book(title="None left", quantity=0)
    few = make_book(title="Few", quantity=2)
    many = make_book(title="Many", quantity=9)

    assert [b.id for b in lib.catalog.list_books(quantity=0, comparison="gt")] == [few.id, many.id]
    assert [b.id for b in lib.catalog.list_books(quantity=3, comparison="lt")] == [none_left.id, few.id]
    # A quantity without a comparison is not a filter
    assert len(lib.catalog.list_books(quantity=3)) == 3


def test_list_books_rejects_unknown_comparison(lib):
    with pytest.raises(ValueError):
        lib.catalog.list_books(quantity=1, comparison="eq")


def test_list_books_skip_and_limit(lib, make_book):
    ids = [make_book(title=f"Volume {i}").id for i in range(5)]

    assert [b.id for b in lib.catalog.list_books(skip=1, limit=2)] == ids[1:3]
    assert [b.id for b in lib.catalog.list_books(skip=4)] == ids[4:]
    assert len(lib.catalog.list_books(limit=0)) == 5


def test_limit_is_capped_at_default(lib, make_book, monkeypatch):
    from libratech.config import settings

    monkeypatch.setattr(settings, "books_default_limit", 2)
    for i in range(3):
        make_book(title=f"Volume {i}")

    assert len(lib.catalog.list_books(limit=50)) == 2


def test_count_books(lib, make_book):
    assert lib.catalog.count_books() == 0
    make_book()
    make_book(title="Emma")
    assert lib.catalog.count_books() == 2


def test_update_book(lib, make_book):
    book = make_book()

    updated = lib.catalog.update_book(book.id, title="Dune Messiah", rating=4.5)

    assert updated.title == "Dune Messiah"
    assert updated.rating == 4.5
    assert updated.author == "Frank Herbert"
    assert updated.quantity == book.quantity


def test_update_book_refuses_quantity(lib, make_book):
    book = make_book(quantity=3)
    with pytest.raises(ValueError):
        lib.catalog.update_book(book.id, quantity=10)
    assert lib.catalog.get_book(book.id).quantity == 3


def test_update_book_not_found(lib):
    with pytest.raises(NotFound):
        lib.catalog.update_book("missing", title="Anything")


def test_categories(lib):
    poetry = lib.catalog.add_category("Poetry")
    lib.catalog.add_category("Classics")

    assert [c.name for c in lib.catalog.list_categories()] == ["Classics", "Poetry"]
    assert [c.id for c in lib.catalog.list_categories(name="Poetry")] == [poetry.id]
    assert lib.catalog.get_category(poetry.id).name == "Poetry"
    assert lib.catalog.get_category("missing") is None


def test_duplicate_category_is_rejected(lib):
    lib.catalog.add_category("Poetry")
    with pytest.raises(ValueError):
        lib.catalog.add_category("Poetry")
    with pytest.raises(ValueError):
        lib.catalog.add_category("  ")
