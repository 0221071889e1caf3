# Overview: Service-layer operations for accounts; password hashing, login and profile updates.

"""
Account service.

Every cart line, order and cancellation is attributed to a customer or a
shop admin account. Customers self-register; admins are created from the CLI.

Passwords are bcrypt-hashed and must be 8+ characters mixing letters and
digits. Bearer sessions live in session_service.
"""

import bcrypt
import re
from ..extensions import db
from ..models import User
from ..models.auth import VALID_ROLES, ROLE_CUSTOMER
from app.time_utils import utcnow


class PasswordValidationError(Exception):
    """Password too weak to accept."""


# Receiver info snapshotted into an order at checkout
PROFILE_FIELDS = ("full_name", "phone", "address")

MIN_PASSWORD_LENGTH = 8


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Strength-check then bcrypt-hash a password; returns the hash as text."""
    validate_password_strength(password)
    digest = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return digest.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    role: str = ROLE_CUSTOMER,
    full_name: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    bcrypt_rounds: int = 12,
) -> User:
    """
    Register an account.

    Raises:
        ValueError: username or email taken, or unknown role
        PasswordValidationError: weak password
    """
    if role not in VALID_ROLES:
        raise ValueError(f"Unknown role '{role}'")

    taken = db.session.query(User.id).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if taken:
        raise ValueError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        role=role,
        full_name=full_name,
        phone=phone,
        address=address,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Match an active account by username or email and check its password.

    Stamps last_login_at on success; returns None on any mismatch.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier),
        User.is_active.is_(True),
    ).first()
    if user is None or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def update_profile(user: User, data: dict) -> User:
    """Update receiver info used as the checkout snapshot source."""
    for key in PROFILE_FIELDS:
        if key in data:
            value = data[key]
            setattr(user, key, value.strip() if isinstance(value, str) and value.strip() else None)
    db.session.commit()
    return user
