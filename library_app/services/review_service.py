import logging
from datetime import datetime
from typing import List, Optional

from library_app.database import get_db_connection
from library_app.errors import ForbiddenError, NotFoundError, ValidationFailedError
from library_app.models import Review
from library_app.services.catalog_service import CatalogService
from library_app.services.user_service import UserService

logger = logging.getLogger(__name__)

_REVIEW_SELECT = """
    SELECT r.id, r.user_id, r.book_id, r.rating, r.comment, r.created_at, u.name AS user_name
    FROM reviews r
    JOIN users u ON u.id = r.user_id
"""


class ReviewService:
    def __init__(self, users: Optional[UserService] = None, catalog: Optional[CatalogService] = None) -> None:
        self.users = users or UserService()
        self.catalog = catalog or CatalogService()

    def create_review(self, email: str, book_id: int, rating: int, comment: Optional[str] = None) -> Review:
        user = self.users.get_user_by_email(email)
        if book_id is None:
            raise ValidationFailedError("Book id is required")
        self.catalog.get_book(book_id)
        if rating is None or not 1 <= rating <= 5:
            raise ValidationFailedError("Validation failed: rating - must be between 1 and 5; ")

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO reviews (user_id, book_id, rating, comment, created_at) VALUES (?, ?, ?, ?, ?)",
                (user.id, book_id, rating, comment, datetime.now().isoformat(timespec="seconds")),
            )
            conn.commit()
            review_id = cursor.lastrowid
        finally:
            conn.close()
        return self.get_review(review_id)

    def get_review(self, review_id: int) -> Review:
        found = self._query("WHERE r.id = ?", (review_id,))
        if not found:
            raise NotFoundError(f"Review not found with id: {review_id}")
        return found[0]

    def get_all_reviews(self) -> List[Review]:
        return self._query("ORDER BY r.id")

    def get_reviews_for_book(self, book_id: int) -> List[Review]:
        return self._query("WHERE r.book_id = ? ORDER BY r.created_at DESC, r.id DESC", (book_id,))

    def get_reviews_for_email(self, email: str) -> List[Review]:
        user = self.users.get_user_by_email(email)
        return self._query("WHERE r.user_id = ? ORDER BY r.created_at DESC, r.id DESC", (user.id,))

    def get_average_rating_for_book(self, book_id: int) -> float:
        """Mean rating of a book, 0.0 when it has no reviews."""
        conn = get_db_connection()
        try:
            avg = conn.execute("SELECT AVG(rating) FROM reviews WHERE book_id = ?", (book_id,)).fetchone()[0]
        finally:
            conn.close()
        return float(avg) if avg is not None else 0.0

    def delete_review(self, review_id: int, email: str) -> None:
        """Staff may delete any review, everyone else only their own."""
        review = self.get_review(review_id)
        user = self.users.get_user_by_email(email)
        if not user.is_staff and review.user_id != user.id:
            raise ForbiddenError("You are not authorized to delete this review")

        conn = get_db_connection()
        try:
            conn.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
            conn.commit()
        finally:
            conn.close()
        logger.info("Review %s deleted by %s", review_id, email)

    def _query(self, clause: str, params: tuple = ()) -> List[Review]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"{_REVIEW_SELECT} {clause}", params).fetchall()
            return [Review.from_row(r) for r in rows]
        finally:
            conn.close()
