"""Data models for the library circulation system.

Plain dataclasses built from ``sqlite3.Row`` objects. Services hand these
around; the API layer turns them into JSON with ``to_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional


class Role(str, Enum):
    USER = "USER"
    LIBRARIAN = "LIBRARIAN"
    ADMIN = "ADMIN"


STAFF_ROLES = frozenset({Role.LIBRARIAN, Role.ADMIN})


@dataclass
class User:
    id: int
    name: str
    email: str
    password_hash: str
    role: Role = Role.USER
    active: bool = True

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def to_dict(self) -> dict:
        # the password hash never leaves the service layer
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "active": self.active,
        }

    @staticmethod
    def from_row(row) -> "User":
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            role=Role(row["role"]),
            active=bool(row["active"]),
        )


@dataclass
class Category:
    id: int
    name: str
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}

    @staticmethod
    def from_row(row) -> "Category":
        return Category(id=row["id"], name=row["name"], description=row["description"])


@dataclass
class Book:
    id: int
    title: str
    author: str
    isbn: str
    published_year: int
    available_copies: int
    category: Optional[Category] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "published_year": self.published_year,
            "available_copies": self.available_copies,
            "category": self.category.to_dict() if self.category else None,
        }

    @staticmethod
    def from_row(row) -> "Book":
        """Build a Book from a row joined with its category columns.

        Expects ``category_id``, ``category_name`` and
        ``category_description`` next to the book columns.
        """
        category = None
        if row["category_id"] is not None:
            category = Category(
                id=row["category_id"],
                name=row["category_name"],
                description=row["category_description"],
            )
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            isbn=row["isbn"],
            published_year=row["published_year"],
            available_copies=row["available_copies"],
            category=category,
        )


@dataclass
class Loan:
    """One copy of a book lent to one user.

    A loan is open while ``return_date`` is None and returned afterwards;
    overdue is derived from the due date and never stored.
    """

    id: int
    user_id: int
    book_id: int
    loan_date: date
    due_date: date
    return_date: Optional[date] = None
    book_title: Optional[str] = None
    user_email: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.return_date is None

    def is_overdue(self, today: Optional[date] = None) -> bool:
        today = today or date.today()
        return self.return_date is None and self.due_date < today

    @property
    def status(self) -> str:
        return "OPEN" if self.return_date is None else "RETURNED"

    def to_dict(self, today: Optional[date] = None) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "loan_date": self.loan_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "status": self.status,
            "overdue": self.is_overdue(today),
        }

    @staticmethod
    def from_row(row) -> "Loan":
        keys = row.keys()
        return Loan(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            loan_date=date.fromisoformat(row["loan_date"]),
            due_date=date.fromisoformat(row["due_date"]),
            return_date=date.fromisoformat(row["return_date"]) if row["return_date"] else None,
            book_title=row["book_title"] if "book_title" in keys else None,
            user_email=row["user_email"] if "user_email" in keys else None,
        )


@dataclass
class Notification:
    id: int
    user_id: int
    message: str
    created_at: str
    loan_id: Optional[int] = None
    read_flag: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "loan_id": self.loan_id,
            "message": self.message,
            "created_at": self.created_at,
            "read": self.read_flag,
        }

    @staticmethod
    def from_row(row) -> "Notification":
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            loan_id=row["loan_id"],
            message=row["message"],
            created_at=row["created_at"],
            read_flag=bool(row["read_flag"]),
        )


@dataclass
class Review:
    id: int
    user_id: int
    book_id: int
    rating: int
    comment: Optional[str]
    created_at: str
    user_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "book_id": self.book_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_row(row) -> "Review":
        keys = row.keys()
        return Review(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            rating=row["rating"],
            comment=row["comment"],
            created_at=row["created_at"],
            user_name=row["user_name"] if "user_name" in keys else None,
        )
