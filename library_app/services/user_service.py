import logging
import sqlite3
from typing import List, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError

from library_app.database import get_db_connection
from library_app.errors import InvalidStateError, NotFoundError, ValidationFailedError
from library_app.models import Role, User
from library_app.security import hash_password, verify_password

logger = logging.getLogger(__name__)

_EMAIL = TypeAdapter(EmailStr)

_USER_COLUMNS = "id, name, email, password_hash, role, active"


class UserService:
    """Owns user accounts: registration, profile updates, roles and the active flag."""

    # ------------------------- Lookups ------------------------- #
    def get_user(self, user_id: int) -> User:
        user = self.find_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found with id: {user_id}")
        return user

    def find_user(self, user_id: int) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
            return User.from_row(row) if row else None
        finally:
            conn.close()

    def get_user_by_email(self, email: str) -> User:
        user = self.find_user_by_email(email)
        if user is None:
            raise NotFoundError(f"User not found with email: {email}")
        return user

    def find_user_by_email(self, email: str) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE email = ? COLLATE NOCASE",
                (email.strip(),),
            ).fetchone()
            return User.from_row(row) if row else None
        finally:
            conn.close()

    def list_users(self) -> List[User]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"SELECT {_USER_COLUMNS} FROM users ORDER BY id").fetchall()
            return [User.from_row(r) for r in rows]
        finally:
            conn.close()

    def list_active_users(self) -> List[User]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE active = 1 ORDER BY id").fetchall()
            return [User.from_row(r) for r in rows]
        finally:
            conn.close()

    def list_users_by_role(self, role: Role) -> List[User]:
        conn = get_db_connection()
        try:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE role = ? ORDER BY id", (role.value,)
            ).fetchall()
            return [User.from_row(r) for r in rows]
        finally:
            conn.close()

    # ------------------------- Mutations ------------------------- #
    def register_user(self, name: str, email: str, password: str) -> User:
        """Self-registration: always role USER and active."""
        return self.create_user(name, email, password, role=Role.USER)

    def create_user(self, name: str, email: str, password: str, role: Role = Role.USER) -> User:
        """Create an account with an explicit role (used by the CLI to bootstrap staff)."""
        name, email = self._validate_profile(name, email)
        if not password:
            raise ValidationFailedError("Validation failed: password - must not be blank; ")
        if self.find_user_by_email(email):
            raise InvalidStateError(f"Email already registered: {email}")

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO users (name, email, password_hash, role, active) VALUES (?, ?, ?, ?, 1)",
                (name, email, hash_password(password), role.value),
            )
            conn.commit()
            user_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise InvalidStateError(f"Email already registered: {email}") from e
        finally:
            conn.close()

        logger.info("Created user %s with role %s", email, role.value)
        return self.get_user(user_id)

    def update_user(
        self,
        user_id: int,
        *,
        name: str,
        email: str,
        password: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> User:
        """Administrative update: any profile field and the role."""
        existing = self.get_user(user_id)
        return self._apply_update(existing, name, email, password, role or existing.role)

    def update_current_user(
        self, current_email: str, *, name: str, email: str, password: Optional[str] = None
    ) -> User:
        """Self-service update: name, email and password; the role is kept."""
        existing = self.get_user_by_email(current_email)
        return self._apply_update(existing, name, email, password, existing.role)

    def deactivate_user(self, user_id: int) -> User:
        self.get_user(user_id)
        self._set_active(user_id, False)
        logger.info("Deactivated user %s", user_id)
        return self.get_user(user_id)

    def activate_user(self, user_id: int) -> User:
        self.get_user(user_id)
        self._set_active(user_id, True)
        logger.info("Activated user %s", user_id)
        return self.get_user(user_id)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the active user matching the credentials, or None."""
        user = self.find_user_by_email(email)
        if user is None or not user.active:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    # ------------------------- Helpers ------------------------- #
    def _apply_update(self, existing: User, name: str, email: str, password: Optional[str], role: Role) -> User:
        name, email = self._validate_profile(name, email)
        other = self.find_user_by_email(email)
        if other is not None and other.id != existing.id:
            raise InvalidStateError(f"Email already registered: {email}")

        password_hash = hash_password(password) if password and password.strip() else existing.password_hash

        conn = get_db_connection()
        try:
            conn.execute(
                "UPDATE users SET name = ?, email = ?, password_hash = ?, role = ? WHERE id = ?",
                (name, email, password_hash, role.value, existing.id),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_user(existing.id)

    def _set_active(self, user_id: int, active: bool) -> None:
        conn = get_db_connection()
        try:
            conn.execute("UPDATE users SET active = ? WHERE id = ?", (1 if active else 0, user_id))
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _validate_profile(name: str, email: str):
        errors = []
        name = (name or "").strip()
        email = (email or "").strip()
        if not name:
            errors.append("name - must not be blank")
        try:
            _EMAIL.validate_python(email)
        except ValidationError:
            errors.append("email - must be a well-formed email address")
        if errors:
            raise ValidationFailedError("Validation failed: " + "".join(f"{e}; " for e in errors))
        return name, email
