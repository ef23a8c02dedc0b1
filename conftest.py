import os
import pytest

from libratech import database
from libratech.library import Library
from libratech.models import Book


@pytest.fixture
def db_file(tmp_path, request, monkeypatch):
    # A unique database file per test; also the module default for code that builds its own Library
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    return path


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    lib.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def make_book(lib):
    def _make(title="Dune", quantity=1, category="Science Fiction", author="Frank Herbert", **kwargs):
        return lib.catalog.add_book(Book(title=title, author=author, category=category, quantity=quantity, **kwargs))
    return _make
