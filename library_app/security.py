"""Authentication helpers.

Passwords are stored as salted PBKDF2-SHA256 hashes produced by werkzeug
(``pbkdf2:sha256:<iterations>$<salt>$<hex digest>``). Requests authenticate
with HTTP Basic, using the account email as the username.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from library_app.config import settings
from library_app.models import Role, STAFF_ROLES, User


def hash_password(password: str, iterations: Optional[int] = None) -> str:
    iterations = iterations or settings.password_hash_iterations
    return generate_password_hash(password, method=f"pbkdf2:sha256:{iterations}")


def verify_password(password: str, password_hash: str) -> bool:
    """Return True if ``password`` matches the stored hash."""
    return check_password_hash(password_hash, password)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller of one request."""

    user_id: int
    email: str
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @staticmethod
    def from_user(user: User) -> "Identity":
        return Identity(user_id=user.id, email=user.email, role=user.role)
