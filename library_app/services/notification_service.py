import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from library_app.database import get_db_connection
from library_app.errors import ForbiddenError, NotFoundError
from library_app.models import Notification, Role
from library_app.services.user_service import UserService

logger = logging.getLogger(__name__)

# Librarians are alerted about loans overdue by more than this many days
ESCALATION_DAYS = 7

_NOTIFICATION_COLUMNS = "id, user_id, loan_id, message, created_at, read_flag"


class NotificationService:
    def __init__(self, users: Optional[UserService] = None) -> None:
        self.users = users or UserService()

    # ------------------------- Reads ------------------------- #
    def get_notifications_for_user(self, user_id: int) -> List[Notification]:
        return self._query("WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,))

    def get_notifications_for_email(self, email: str) -> List[Notification]:
        user = self.users.get_user_by_email(email)
        return self.get_notifications_for_user(user.id)

    def get_unread_notifications_for_email(self, email: str) -> List[Notification]:
        user = self.users.get_user_by_email(email)
        return self._query("WHERE user_id = ? AND read_flag = 0 ORDER BY created_at DESC, id DESC", (user.id,))

    def get_notification(self, notification_id: int) -> Notification:
        found = self._query("WHERE id = ?", (notification_id,))
        if not found:
            raise NotFoundError(f"Notification not found with id: {notification_id}")
        return found[0]

    # ------------------------- Writes ------------------------- #
    def create_notification(self, user_id: int, message: str, loan_id: Optional[int] = None) -> Notification:
        self.users.get_user(user_id)
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO notifications (user_id, loan_id, message, created_at, read_flag) VALUES (?, ?, ?, ?, 0)",
                (user_id, loan_id, message, datetime.now().isoformat(timespec="seconds")),
            )
            conn.commit()
            notification_id = cursor.lastrowid
        finally:
            conn.close()
        return self.get_notification(notification_id)

    def mark_as_read(self, notification_id: int, email: str) -> Notification:
        notification = self._owned_by(notification_id, email, "modify")
        if not notification.read_flag:
            conn = get_db_connection()
            try:
                conn.execute("UPDATE notifications SET read_flag = 1 WHERE id = ?", (notification_id,))
                conn.commit()
            finally:
                conn.close()
            notification.read_flag = True
        return notification

    def delete_notification(self, notification_id: int, email: str) -> None:
        self._owned_by(notification_id, email, "delete")
        conn = get_db_connection()
        try:
            conn.execute("DELETE FROM notifications WHERE id = ?", (notification_id,))
            conn.commit()
        finally:
            conn.close()

    def notify_librarians_about_overdue_beyond_one_week(self, today: Optional[date] = None) -> int:
        """Send every librarian one summary of loans overdue by more than a week.

        Does nothing when there are no such loans. Returns the number of
        notifications created.
        """
        today = today or date.today()
        cutoff = today - timedelta(days=ESCALATION_DAYS)
        conn = get_db_connection()
        try:
            count = conn.execute(
                "SELECT COUNT(*) FROM loans WHERE return_date IS NULL AND due_date < ?",
                (cutoff.isoformat(),),
            ).fetchone()[0]
        finally:
            conn.close()

        if count == 0:
            return 0

        message = f"There are {count} loans overdue by more than one week."
        librarians = self.users.list_users_by_role(Role.LIBRARIAN)
        for librarian in librarians:
            self.create_notification(librarian.id, message)
        logger.info("Alerted %d librarians about %d long-overdue loans", len(librarians), count)
        return len(librarians)

    # ------------------------- Helpers ------------------------- #
    def _owned_by(self, notification_id: int, email: str, action: str) -> Notification:
        notification = self.get_notification(notification_id)
        user = self.users.get_user_by_email(email)
        if notification.user_id != user.id:
            raise ForbiddenError(f"You are not allowed to {action} this notification")
        return notification

    def _query(self, clause: str, params: tuple = ()) -> List[Notification]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"SELECT {_NOTIFICATION_COLUMNS} FROM notifications {clause}", params).fetchall()
            return [Notification.from_row(r) for r in rows]
        finally:
            conn.close()
