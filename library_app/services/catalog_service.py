import logging
import sqlite3
from typing import List, Optional

from library_app.database import get_db_connection
from library_app.errors import InvalidStateError, NotFoundError, ValidationFailedError
from library_app.models import Book, Category

logger = logging.getLogger(__name__)

MIN_PUBLISHED_YEAR = 1500

_BOOK_SELECT = """
    SELECT b.id, b.title, b.author, b.isbn, b.published_year, b.available_copies,
           b.category_id, c.name AS category_name, c.description AS category_description
    FROM books b
    LEFT JOIN categories c ON c.id = b.category_id
"""


class CatalogService:
    """Books and categories. The copy counter is also moved by the loan engine."""

    # ------------------------- Books ------------------------- #
    def list_books(self) -> List[Book]:
        return self._query_books("ORDER BY b.title, b.id")

    def get_book(self, book_id: int) -> Book:
        books = self._query_books("WHERE b.id = ?", (book_id,))
        if not books:
            raise NotFoundError(f"Book not found with id: {book_id}")
        return books[0]

    def create_book(
        self,
        *,
        title: str,
        author: str,
        isbn: str,
        published_year: int,
        available_copies: int,
        category_id: Optional[int] = None,
    ) -> Book:
        values = self._validate_book(title, author, isbn, published_year, available_copies, category_id)
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO books (title, author, isbn, published_year, available_copies, category_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                values,
            )
            conn.commit()
            book_id = cursor.lastrowid
        finally:
            conn.close()
        logger.info("Added book %s (%s)", book_id, values[0])
        return self.get_book(book_id)

    def update_book(
        self,
        book_id: int,
        *,
        title: str,
        author: str,
        isbn: str,
        published_year: int,
        available_copies: int,
        category_id: Optional[int] = None,
    ) -> Book:
        self.get_book(book_id)
        values = self._validate_book(title, author, isbn, published_year, available_copies, category_id)
        conn = get_db_connection()
        try:
            conn.execute(
                """
                UPDATE books
                SET title = ?, author = ?, isbn = ?, published_year = ?, available_copies = ?, category_id = ?
                WHERE id = ?
                """,
                (*values, book_id),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_book(book_id)

    def delete_book(self, book_id: int) -> None:
        self.get_book(book_id)
        conn = get_db_connection()
        try:
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise InvalidStateError(f"Book {book_id} has loan history and cannot be deleted") from e
        finally:
            conn.close()
        logger.info("Deleted book %s", book_id)

    def search_by_title(self, title: str) -> List[Book]:
        return self._query_books("WHERE b.title LIKE ? ORDER BY b.title, b.id", (f"%{title}%",))

    def search_by_author(self, author: str) -> List[Book]:
        return self._query_books("WHERE b.author LIKE ? ORDER BY b.title, b.id", (f"%{author}%",))

    def search_by_category_name(self, category: str) -> List[Book]:
        return self._query_books("WHERE c.name = ? COLLATE NOCASE ORDER BY b.title, b.id", (category.strip(),))

    def search_anywhere(self, keyword: str) -> List[Book]:
        """Case-insensitive substring match on title, author or category name."""
        pattern = f"%{keyword}%"
        return self._query_books(
            "WHERE b.title LIKE ? OR b.author LIKE ? OR c.name LIKE ? ORDER BY b.title, b.id",
            (pattern, pattern, pattern),
        )

    # ------------------------- Categories ------------------------- #
    def list_categories(self) -> List[Category]:
        conn = get_db_connection()
        try:
            rows = conn.execute("SELECT id, name, description FROM categories ORDER BY name, id").fetchall()
            return [Category.from_row(r) for r in rows]
        finally:
            conn.close()

    def get_category(self, category_id: int) -> Category:
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT id, name, description FROM categories WHERE id = ?", (category_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError(f"Category not found with id: {category_id}")
        return Category.from_row(row)

    def create_category(self, name: str, description: Optional[str] = None) -> Category:
        name = self._validate_category_name(name)
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO categories (name, description) VALUES (?, ?)", (name, description)
            )
            conn.commit()
            category_id = cursor.lastrowid
        finally:
            conn.close()
        return self.get_category(category_id)

    def update_category(self, category_id: int, name: str, description: Optional[str] = None) -> Category:
        self.get_category(category_id)
        name = self._validate_category_name(name)
        conn = get_db_connection()
        try:
            conn.execute(
                "UPDATE categories SET name = ?, description = ? WHERE id = ?",
                (name, description, category_id),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_category(category_id)

    def delete_category(self, category_id: int) -> None:
        """Delete a category; its books stay in the catalog without one."""
        self.get_category(category_id)
        conn = get_db_connection()
        try:
            conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            conn.commit()
        finally:
            conn.close()

    # ------------------------- Helpers ------------------------- #
    def _query_books(self, clause: str, params: tuple = ()) -> List[Book]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"{_BOOK_SELECT} {clause}", params).fetchall()
            return [Book.from_row(r) for r in rows]
        finally:
            conn.close()

    def _validate_book(self, title, author, isbn, published_year, available_copies, category_id):
        errors = []
        title = (title or "").strip()
        author = (author or "").strip()
        isbn = (isbn or "").strip()
        if not title:
            errors.append("title - Title is required")
        elif len(title) > 150:
            errors.append("title - Title must be at most 150 characters")
        if not author:
            errors.append("author - Author is required")
        elif len(author) > 100:
            errors.append("author - Author must be at most 100 characters")
        if not isbn:
            errors.append("isbn - ISBN is required")
        elif len(isbn) > 20:
            errors.append("isbn - ISBN must be at most 20 characters")
        if published_year is None or published_year < MIN_PUBLISHED_YEAR:
            errors.append(f"published_year - Year must be at least {MIN_PUBLISHED_YEAR}")
        if available_copies is None or available_copies < 0:
            errors.append("available_copies - Available copies cannot be negative")
        if errors:
            raise ValidationFailedError("Validation failed: " + "".join(f"{e}; " for e in errors))
        if category_id is not None:
            self.get_category(category_id)
        return title, author, isbn, published_year, available_copies, category_id

    @staticmethod
    def _validate_category_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationFailedError("Validation failed: name - Name is required; ")
        return name
