import os
import re
from datetime import date, timedelta

import pytest

from library_app import database
from library_app.config import settings
from library_app.models import Role
from library_app.services import (
    CatalogService,
    LoanService,
    NotificationService,
    ReviewService,
    UserService,
)


@pytest.fixture(autouse=True)
def db_file(tmp_path, request, monkeypatch):
    # Give every test its own database file
    path = str(tmp_path / f"test_{re.sub(r'[^A-Za-z0-9_.-]', '_', request.node.name)}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    monkeypatch.setenv("LIBRARY_DB_FILE", path)
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")
    # Keep password hashing fast under test
    monkeypatch.setattr(settings, "password_hash_iterations", 1000)
    database.initialize_database()
    yield path
    if os.path.exists(path):
        os.remove(path)


@pytest.fixture
def users():
    return UserService()


@pytest.fixture
def catalog():
    return CatalogService()


@pytest.fixture
def notifications(users):
    return NotificationService(users)


@pytest.fixture
def loans(users, notifications):
    return LoanService(users, notifications)


@pytest.fixture
def reviews(users, catalog):
    return ReviewService(users, catalog)


@pytest.fixture
def reader(users):
    return users.register_user("Ada Reader", "ada@example.com", "secret1")


@pytest.fixture
def other_reader(users):
    return users.register_user("Bob Reader", "bob@example.com", "secret2")


@pytest.fixture
def librarian(users):
    return users.create_user("Lena Librarian", "lena@example.com", "shelves", role=Role.LIBRARIAN)


@pytest.fixture
def admin(users):
    return users.create_user("Root Admin", "admin@example.com", "rootpw", role=Role.ADMIN)


@pytest.fixture
def make_book(catalog):
    def _make(title="Dune", copies=1, **kwargs):
        fields = dict(
            title=title,
            author=kwargs.pop("author", "Frank Herbert"),
            isbn=kwargs.pop("isbn", "9780441013593"),
            published_year=kwargs.pop("published_year", 1965),
            available_copies=copies,
        )
        fields.update(kwargs)
        return catalog.create_book(**fields)

    return _make


@pytest.fixture
def days_ago():
    def _days_ago(n):
        return date.today() - timedelta(days=n)

    return _days_ago
