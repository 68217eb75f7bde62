from datetime import date
from typing import Dict, Optional

from library_app.database import get_db_connection


class ReportService:
    """Circulation counters for the admin summary."""

    def summary(self, today: Optional[date] = None) -> Dict[str, int]:
        today = today or date.today()
        conn = get_db_connection()
        try:
            books, copies = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(available_copies), 0) FROM books"
            ).fetchone()
            active = conn.execute("SELECT COUNT(*) FROM loans WHERE return_date IS NULL").fetchone()[0]
            overdue = conn.execute(
                "SELECT COUNT(*) FROM loans WHERE return_date IS NULL AND due_date < ?",
                (today.isoformat(),),
            ).fetchone()[0]
            users = conn.execute("SELECT COUNT(*) FROM users WHERE active = 1").fetchone()[0]
        finally:
            conn.close()
        return {
            "total_books": books,
            "available_copies": copies,
            "active_loans": active,
            "overdue_loans": overdue,
            "active_users": users,
        }
