"""Loan engine: borrowing, returning and overdue detection.

A loan moves one way, from OPEN (no return date) to RETURNED. Every borrow
takes one copy off ``books.available_copies`` and every return puts one
back; the counter change and the loan row change are committed together in
a single ``BEGIN IMMEDIATE`` transaction, so a failure leaves neither
behind and two borrows racing for the last copy cannot both succeed.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional

from library_app.database import get_db_connection, transaction
from library_app.errors import ForbiddenError, InvalidStateError, NotFoundError
from library_app.models import Loan, Role, STAFF_ROLES
from library_app.services.notification_service import NotificationService
from library_app.services.user_service import UserService

logger = logging.getLogger(__name__)

LOAN_PERIOD_DAYS = 14

_LOAN_SELECT = """
    SELECT l.id, l.user_id, l.book_id, l.loan_date, l.due_date, l.return_date,
           b.title AS book_title, u.email AS user_email
    FROM loans l
    JOIN books b ON b.id = l.book_id
    JOIN users u ON u.id = l.user_id
"""


class LoanService:
    def __init__(
        self,
        users: Optional[UserService] = None,
        notifications: Optional[NotificationService] = None,
    ) -> None:
        self.users = users or UserService()
        self.notifications = notifications or NotificationService(self.users)

    # ------------------------- Reads ------------------------- #
    def get_all_loans(self) -> List[Loan]:
        return self._query("ORDER BY l.id")

    def get_loan(self, loan_id: int) -> Loan:
        loans = self._query("WHERE l.id = ?", (loan_id,))
        if not loans:
            raise NotFoundError(f"Loan not found with id: {loan_id}")
        return loans[0]

    def get_loans_for_user(self, user_id: int) -> List[Loan]:
        return self._query("WHERE l.user_id = ? ORDER BY l.id", (user_id,))

    def get_loans_for_email(self, email: str) -> List[Loan]:
        user = self.users.get_user_by_email(email)
        return self.get_loans_for_user(user.id)

    def get_active_loans_for_email(self, email: str) -> List[Loan]:
        user = self.users.get_user_by_email(email)
        return self._query("WHERE l.user_id = ? AND l.return_date IS NULL ORDER BY l.id", (user.id,))

    def get_all_active_loans(self) -> List[Loan]:
        return self._query("WHERE l.return_date IS NULL ORDER BY l.id")

    def get_overdue_loans(self, today: Optional[date] = None) -> List[Loan]:
        """Open loans whose due date is before ``today``."""
        today = today or date.today()
        return self._query(
            "WHERE l.return_date IS NULL AND l.due_date < ? ORDER BY l.due_date, l.id",
            (today.isoformat(),),
        )

    # ------------------------- Lifecycle ------------------------- #
    def create_loan(self, user_id: int, book_id: int, today: Optional[date] = None) -> Loan:
        """Lend one copy of ``book_id`` to ``user_id`` for ``LOAN_PERIOD_DAYS``.

        Raises ``NotFoundError`` for an unknown user or book and
        ``InvalidStateError`` for an inactive user or a book with no copies
        left.
        """
        today = today or date.today()
        with transaction() as conn:
            user = conn.execute("SELECT id, active FROM users WHERE id = ?", (user_id,)).fetchone()
            if user is None:
                raise NotFoundError(f"User not found with id: {user_id}")
            book = conn.execute("SELECT id FROM books WHERE id = ?", (book_id,)).fetchone()
            if book is None:
                raise NotFoundError(f"Book not found with id: {book_id}")
            if not user["active"]:
                raise InvalidStateError("User is not active")

            taken = conn.execute(
                "UPDATE books SET available_copies = available_copies - 1 WHERE id = ? AND available_copies > 0",
                (book_id,),
            ).rowcount
            if taken == 0:
                raise InvalidStateError("No copies available for this book")

            due = today + timedelta(days=LOAN_PERIOD_DAYS)
            cursor = conn.execute(
                "INSERT INTO loans (user_id, book_id, loan_date, due_date, return_date) VALUES (?, ?, ?, ?, NULL)",
                (user_id, book_id, today.isoformat(), due.isoformat()),
            )
            loan_id = cursor.lastrowid

        logger.info("Loan %s created: user %s borrowed book %s until %s", loan_id, user_id, book_id, due)
        return self.get_loan(loan_id)

    def create_loan_for_email(self, email: str, book_id: int, today: Optional[date] = None) -> Loan:
        user = self.users.get_user_by_email(email)
        return self.create_loan(user.id, book_id, today)

    def return_loan(self, loan_id: int, acting_email: str, today: Optional[date] = None) -> Loan:
        """Close an open loan and give its copy back to the catalog.

        The caller must own the loan or hold a staff role.
        """
        today = today or date.today()
        with transaction() as conn:
            loan = conn.execute(
                "SELECT id, user_id, book_id, return_date FROM loans WHERE id = ?", (loan_id,)
            ).fetchone()
            if loan is None:
                raise NotFoundError(f"Loan not found with id: {loan_id}")
            if loan["return_date"] is not None:
                raise InvalidStateError("Loan already returned")

            actor = conn.execute(
                "SELECT id, role FROM users WHERE email = ? COLLATE NOCASE", (acting_email.strip(),)
            ).fetchone()
            if actor is None:
                raise NotFoundError(f"Current user not found: {acting_email}")

            is_owner = actor["id"] == loan["user_id"]
            is_staff = Role(actor["role"]) in STAFF_ROLES
            if not is_owner and not is_staff:
                raise ForbiddenError("You are not allowed to return this loan")

            closed = conn.execute(
                "UPDATE loans SET return_date = ? WHERE id = ? AND return_date IS NULL",
                (today.isoformat(), loan_id),
            ).rowcount
            if closed == 0:
                raise InvalidStateError("Loan already returned")
            conn.execute(
                "UPDATE books SET available_copies = available_copies + 1 WHERE id = ?",
                (loan["book_id"],),
            )

        logger.info("Loan %s returned by %s", loan_id, acting_email)
        return self.get_loan(loan_id)

    def delete_loan(self, loan_id: int) -> None:
        """Remove a loan record outright.

        Unlike ``return_loan`` this leaves ``available_copies`` untouched.
        """
        self.get_loan(loan_id)
        conn = get_db_connection()
        try:
            conn.execute("DELETE FROM loans WHERE id = ?", (loan_id,))
            conn.commit()
        finally:
            conn.close()
        logger.info("Loan %s deleted", loan_id)

    def create_overdue_notifications(self, today: Optional[date] = None) -> int:
        """Notify the borrower of every overdue loan; returns how many were sent.

        There is no duplicate suppression: each call notifies again.
        """
        count = 0
        for loan in self.get_overdue_loans(today):
            message = (
                f"Loan for book '{loan.book_title}' is overdue. "
                f"Due date was {loan.due_date.isoformat()}."
            )
            self.notifications.create_notification(loan.user_id, message, loan_id=loan.id)
            count += 1
        logger.info("Created %d overdue notifications", count)
        return count

    # ------------------------- Helpers ------------------------- #
    def _query(self, clause: str, params: tuple = ()) -> List[Loan]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"{_LOAN_SELECT} {clause}", params).fetchall()
            return [Loan.from_row(r) for r in rows]
        finally:
            conn.close()
