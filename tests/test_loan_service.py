import sqlite3
import threading
from datetime import date, timedelta

import pytest

from library_app.database import get_db_connection
from library_app.errors import ForbiddenError, InvalidStateError, NotFoundError
from library_app.services.loan_service import LOAN_PERIOD_DAYS


def test_create_loan_sets_dates_and_takes_a_copy(loans, catalog, reader, make_book):
    book = make_book(copies=2)
    loan = loans.create_loan(reader.id, book.id)

    assert loan.loan_date == date.today()
    assert loan.due_date == date.today() + timedelta(days=LOAN_PERIOD_DAYS)
    assert loan.return_date is None
    assert loan.status == "OPEN"
    assert loan.book_title == "Dune"
    assert catalog.get_book(book.id).available_copies == 1


def test_scenario_last_copy_is_shared_in_turn(loans, catalog, users, reader, other_reader, make_book):
    book = make_book(copies=1)

    first = loans.create_loan(reader.id, book.id)
    assert catalog.get_book(book.id).available_copies == 0

    with pytest.raises(InvalidStateError, match="No copies available"):
        loans.create_loan(other_reader.id, book.id)
    assert catalog.get_book(book.id).available_copies == 0

    loans.return_loan(first.id, reader.email)
    assert catalog.get_book(book.id).available_copies == 1

    loans.create_loan_for_email(other_reader.email, book.id)
    assert catalog.get_book(book.id).available_copies == 0


def test_copy_count_follows_borrows_and_returns(loans, catalog, reader, make_book):
    book = make_book(copies=5)
    opened = [loans.create_loan(reader.id, book.id) for _ in range(4)]
    for loan in opened[:3]:
        loans.return_loan(loan.id, reader.email)

    assert catalog.get_book(book.id).available_copies == 5 - 4 + 3


def test_failed_borrow_leaves_no_trace(loans, catalog, reader, make_book):
    book = make_book(copies=0)
    with pytest.raises(InvalidStateError):
        loans.create_loan(reader.id, book.id)
    assert loans.get_all_loans() == []
    assert catalog.get_book(book.id).available_copies == 0


def test_failure_after_decrement_rolls_back(loans, catalog, reader, make_book):
    book = make_book(copies=2)
    conn = get_db_connection()
    try:
        conn.execute(
            "CREATE TRIGGER reject_loans BEFORE INSERT ON loans BEGIN SELECT RAISE(ABORT, 'loans are closed'); END"
        )
        conn.commit()
    finally:
        conn.close()

    with pytest.raises(sqlite3.DatabaseError, match="loans are closed"):
        loans.create_loan(reader.id, book.id)

    assert catalog.get_book(book.id).available_copies == 2
    assert loans.get_all_loans() == []


def test_concurrent_borrows_share_the_last_copy(loans, catalog, users, make_book):
    book = make_book(copies=1)
    borrowers = [users.register_user(f"Racer {i}", f"racer{i}@example.com", "pw") for i in range(8)]
    start = threading.Barrier(len(borrowers))
    outcomes = []

    def borrow(user_id):
        start.wait()
        try:
            loans.create_loan(user_id, book.id)
            outcomes.append("ok")
        except InvalidStateError:
            outcomes.append("sold out")

    threads = [threading.Thread(target=borrow, args=(b.id,)) for b in borrowers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["ok"] + ["sold out"] * 7
    assert catalog.get_book(book.id).available_copies == 0
    assert len(loans.get_all_active_loans()) == 1


def test_create_loan_unknown_user_or_book(loans, reader, make_book):
    book = make_book()
    with pytest.raises(NotFoundError):
        loans.create_loan(999, book.id)
    with pytest.raises(NotFoundError):
        loans.create_loan(reader.id, 999)
    with pytest.raises(NotFoundError):
        loans.create_loan_for_email("nobody@example.com", book.id)


def test_inactive_user_cannot_borrow(loans, users, catalog, reader, make_book):
    book = make_book(copies=1)
    users.deactivate_user(reader.id)
    with pytest.raises(InvalidStateError, match="not active"):
        loans.create_loan(reader.id, book.id)
    assert catalog.get_book(book.id).available_copies == 1


def test_return_is_one_way(loans, catalog, reader, make_book):
    book = make_book(copies=1)
    loan = loans.create_loan(reader.id, book.id)

    returned = loans.return_loan(loan.id, reader.email)
    assert returned.return_date == date.today()
    assert returned.status == "RETURNED"

    with pytest.raises(InvalidStateError, match="already returned"):
        loans.return_loan(loan.id, reader.email)
    assert catalog.get_book(book.id).available_copies == 1


def test_return_by_staff_is_allowed(loans, reader, librarian, admin, make_book):
    book = make_book(copies=2)
    first = loans.create_loan(reader.id, book.id)
    second = loans.create_loan(reader.id, book.id)

    assert loans.return_loan(first.id, librarian.email).return_date is not None
    assert loans.return_loan(second.id, admin.email).return_date is not None


def test_return_by_someone_else_is_forbidden(loans, catalog, reader, other_reader, make_book):
    book = make_book(copies=1)
    loan = loans.create_loan(reader.id, book.id)

    with pytest.raises(ForbiddenError):
        loans.return_loan(loan.id, other_reader.email)
    assert loans.get_loan(loan.id).return_date is None
    assert catalog.get_book(book.id).available_copies == 0


def test_return_unknown_loan_or_actor(loans, reader, make_book):
    with pytest.raises(NotFoundError):
        loans.return_loan(42, reader.email)
    loan = loans.create_loan(reader.id, make_book().id)
    with pytest.raises(NotFoundError, match="Current user not found"):
        loans.return_loan(loan.id, "ghost@example.com")


def test_overdue_loan_disappears_after_return(loans, reader, make_book, days_ago):
    book = make_book(copies=1)
    loan = loans.create_loan(reader.id, book.id, today=days_ago(20 + LOAN_PERIOD_DAYS))
    assert loan.due_date == days_ago(20)

    assert [l.id for l in loans.get_overdue_loans()] == [loan.id]
    assert loans.get_loan(loan.id).is_overdue()

    loans.return_loan(loan.id, reader.email)
    assert loans.get_overdue_loans() == []


def test_overdue_boundary(loans, reader, make_book, days_ago):
    book = make_book(copies=3)
    due_today = loans.create_loan(reader.id, book.id, today=days_ago(LOAN_PERIOD_DAYS))
    due_yesterday = loans.create_loan(reader.id, book.id, today=days_ago(LOAN_PERIOD_DAYS + 1))

    overdue_ids = [l.id for l in loans.get_overdue_loans()]
    assert due_yesterday.id in overdue_ids
    assert due_today.id not in overdue_ids


def test_active_loan_queries(loans, reader, other_reader, make_book):
    book = make_book(copies=3)
    mine = loans.create_loan(reader.id, book.id)
    done = loans.create_loan(reader.id, book.id)
    theirs = loans.create_loan(other_reader.id, book.id)
    loans.return_loan(done.id, reader.email)

    assert [l.id for l in loans.get_active_loans_for_email(reader.email)] == [mine.id]
    assert {l.id for l in loans.get_all_active_loans()} == {mine.id, theirs.id}
    assert {l.id for l in loans.get_loans_for_email(reader.email)} == {mine.id, done.id}


def test_delete_loan_does_not_restore_copies(loans, catalog, reader, make_book):
    book = make_book(copies=1)
    loan = loans.create_loan(reader.id, book.id)

    loans.delete_loan(loan.id)

    with pytest.raises(NotFoundError):
        loans.get_loan(loan.id)
    assert catalog.get_book(book.id).available_copies == 0
    with pytest.raises(NotFoundError):
        loans.delete_loan(loan.id)


def test_overdue_notifications_one_per_loan(loans, notifications, users, make_book, days_ago):
    borrowers = [
        users.register_user(f"Reader {i}", f"reader{i}@example.com", "pw") for i in range(3)
    ]
    book = make_book(title="Solaris", copies=3)
    for borrower in borrowers:
        loans.create_loan(borrower.id, book.id, today=days_ago(30))

    assert loans.create_overdue_notifications() == 3

    for borrower in borrowers:
        received = notifications.get_notifications_for_user(borrower.id)
        assert len(received) == 1
        assert "Solaris" in received[0].message
        assert days_ago(30 - LOAN_PERIOD_DAYS).isoformat() in received[0].message
        assert received[0].loan_id is not None


def test_overdue_notifications_are_not_deduplicated(loans, notifications, reader, make_book, days_ago):
    loans.create_loan(reader.id, make_book().id, today=days_ago(30))
    loans.create_overdue_notifications()
    loans.create_overdue_notifications()
    assert len(notifications.get_notifications_for_user(reader.id)) == 2
