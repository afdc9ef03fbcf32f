"""
Factory functions for creating test data.

These factories write through a LocalStore so every row goes through the
same unit-of-work path production code uses.
"""

from datetime import datetime, timedelta
from typing import Optional
import secrets

from beatwell.models import MealLog, Session, User
from beatwell.services.gateway_schemas import MealOption
from beatwell.services.local_store import LocalStore


TEST_PASSWORD = "Passw0rd!"


# =============================================================================
# User Factory
# =============================================================================


def create_user(
    store: LocalStore,
    username: Optional[str] = None,
    password: str = TEST_PASSWORD,
    user_id: Optional[int] = None,
    **overrides,
) -> User:
    """
    Create a cached user with a hashed password.

    Args:
        store: Local store to write to
        username: Username (auto-generated if not provided)
        password: Plain text password to hash
        user_id: Server user id to mirror (auto-assigned if not provided)
        **overrides: Email or profile fields

    Returns:
        Created User object
    """
    if username is None:
        username = f"user_{secrets.token_hex(4)}"
    email = overrides.pop("email", f"{username}@example.com")
    if user_id is not None:
        overrides["id"] = user_id

    return store.insert_user(
        username,
        email,
        password_hash=store.codec.hash(password),
        **overrides,
    )


# =============================================================================
# Session Factory
# =============================================================================


def create_session(
    store: LocalStore,
    user: User,
    token: Optional[str] = None,
    expires_in: timedelta = timedelta(days=30),
) -> Session:
    """Create a local session expiring relative to the store's clock."""
    return store.create_session(
        user.id,
        token or store.codec.new_token(),
        store.clock() + expires_in,
    )


# =============================================================================
# Meal Factories
# =============================================================================


def create_meal_log(
    store: LocalStore,
    user: User,
    logged_at: Optional[datetime] = None,
    **overrides,
) -> MealLog:
    """Create a predefined-option meal log (custom if is_custom=True is passed)."""
    defaults = {
        "meal_type": "breakfast",
        "meal_option_name": "Oatmeal with berries",
        "calories": 350,
        "portion_size": 1.0,
        "meal_option_id": 1,
    }
    defaults.update(overrides)
    return store.insert_meal_log(user.id, logged_at=logged_at, **defaults)


def make_meal_option(**overrides) -> MealOption:
    defaults = {
        "id": 1,
        "name": "Oatmeal with berries",
        "description": "Rolled oats",
        "calories": 350,
    }
    defaults.update(overrides)
    return MealOption(**defaults)
