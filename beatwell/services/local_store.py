"""
Durable on-device store for users, sessions, meal logs and water intake.

Every public method is one unit of work: it opens a session, commits on
success and rolls back on failure, so no partial state is observable by
other callers. SQLAlchemy failures are translated into the store's own
errors (DuplicateKeyError / StorageUnavailableError) before they leave.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from beatwell.database import init_db, make_engine, make_session_factory
from beatwell.models import MealLog, MealType, Session, User, WaterIntake
from beatwell.services.auth.credentials import CredentialCodec, credential_codec
from beatwell.services.errors import DuplicateKeyError, StorageUnavailableError


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation used by every stored column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LocalStore:
    """Local Entity Store backed by SQLite through SQLAlchemy."""

    def __init__(
        self,
        engine: Optional[Engine] = None,
        codec: Optional[CredentialCodec] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine or make_engine()
        self._session_factory = make_session_factory(self.engine)
        self.codec = codec or credential_codec
        self.clock = clock

        # Water upsert locks per (user_id, day) with their holder count; an
        # entry is dropped when its last holder leaves
        self._water_locks: Dict[Tuple[int, date], Tuple[threading.Lock, int]] = {}
        self._water_locks_guard = threading.Lock()

    @classmethod
    def open(cls, database_url: Optional[str] = None, **kwargs) -> "LocalStore":
        """Create the engine, make sure tables exist and return a ready store."""
        try:
            engine = make_engine(database_url)
            init_db(engine)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Could not initialize local store: %s", e)
            raise StorageUnavailableError(f"Could not initialize local store: {e}") from e
        return cls(engine, **kwargs)

    @contextmanager
    def _unit_of_work(self) -> Iterator[DBSession]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise DuplicateKeyError(str(e.orig)) from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Local store operation failed: %s", e)
            raise StorageUnavailableError(str(e)) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # =========================================================================
    # USERS
    # =========================================================================

    def insert_user(self, username: str, email: str, password_hash: Optional[str] = None, **fields) -> User:
        """
        Insert a new user row.

        Raises DuplicateKeyError if the username or email is already stored.
        """
        with self._unit_of_work() as db:
            now = self.clock()
            user = User(
                username=username,
                email=email.lower(),
                password_hash=password_hash,
                created_at=now,
                updated_at=now,
                **self._profile_values(fields),
            )
            if "id" in fields:
                user.id = fields["id"]
            db.add(user)
            db.flush()
            return user

    def save_user(self, user_id: int, username: str, email: str, password_hash: Optional[str] = None, **fields) -> User:
        """
        Insert or refresh the cached copy of a server-side user.

        The password hash is only replaced when a new one is given.
        """
        with self._unit_of_work() as db:
            user = db.get(User, user_id)
            now = self.clock()
            if user is None:
                user = User(id=user_id, created_at=now)
                db.add(user)
            user.username = username
            user.email = email.lower()
            if password_hash:
                user.password_hash = password_hash
            for field, value in self._profile_values(fields).items():
                setattr(user, field, value)
            user.updated_at = now
            db.flush()
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._unit_of_work() as db:
            return db.get(User, user_id)

    def find_user_by_username(self, username: str) -> Optional[User]:
        with self._unit_of_work() as db:
            return db.query(User).filter(User.username == username).first()

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._unit_of_work() as db:
            return db.query(User).filter(User.email == email.lower()).first()

    def user_exists(self, username: str, email: str) -> bool:
        """True if either the username or the email is taken."""
        with self._unit_of_work() as db:
            return (
                db.query(User.id)
                .filter(or_(User.username == username, User.email == email.lower()))
                .first()
                is not None
            )

    def update_user(self, user_id: int, **fields) -> Optional[User]:
        """
        Merge the given profile fields into the stored user.

        Fields that are not passed keep their value; updated_at is refreshed
        on every call. Returns None if the user is not cached locally.
        """
        with self._unit_of_work() as db:
            user = db.get(User, user_id)
            if user is None:
                return None
            for field, value in self._profile_values(fields).items():
                setattr(user, field, value)
            user.updated_at = self.clock()
            db.flush()
            return user

    def verify_credentials(self, identifier: str, password: str) -> Optional[User]:
        """Look a user up by username or email and check the stored hash."""
        user = self.find_user_by_username(identifier) or self.find_user_by_email(identifier)
        if user is None or not self.codec.verify(password, user.password_hash):
            return None
        return user

    @staticmethod
    def _profile_values(fields: dict) -> dict:
        # Unknown keys are dropped; None means "not provided"
        return {
            key: value
            for key, value in fields.items()
            if key in User.PROFILE_FIELDS and value is not None
        }

    # =========================================================================
    # SESSIONS
    # =========================================================================

    def create_session(self, user_id: int, token: str, expires_at: datetime) -> Session:
        with self._unit_of_work() as db:
            session = Session(
                user_id=user_id,
                token=token,
                expires_at=expires_at,
                created_at=self.clock(),
            )
            db.add(session)
            db.flush()
            return session

    def find_valid_session(self, token: str) -> Optional[Tuple[User, datetime]]:
        """
        Return (user, expires_at) for a token whose expiry is still ahead.

        Expiry is evaluated here, at read time. Expired rows are left in place.
        """
        with self._unit_of_work() as db:
            row = (
                db.query(User, Session.expires_at)
                .join(Session, Session.user_id == User.id)
                .filter(Session.token == token, Session.expires_at > self.clock())
                .first()
            )
            if row is None:
                return None
            user, expires_at = row
            return user, expires_at

    def delete_session(self, token: str) -> bool:
        with self._unit_of_work() as db:
            return db.query(Session).filter(Session.token == token).delete() > 0

    def delete_all_sessions_for_user(self, user_id: int) -> int:
        with self._unit_of_work() as db:
            return db.query(Session).filter(Session.user_id == user_id).delete()

    # =========================================================================
    # MEAL LOGS
    # =========================================================================

    def insert_meal_log(
        self,
        user_id: int,
        meal_type: str,
        meal_option_name: str,
        calories: int,
        portion_size: float = 1.0,
        meal_option_id: Optional[int] = None,
        meal_option_description: Optional[str] = None,
        is_custom: bool = False,
        logged_at: Optional[datetime] = None,
    ) -> MealLog:
        meal = MealLog(
            user_id=user_id,
            meal_type=MealType(meal_type).value,
            meal_option_id=meal_option_id,
            meal_option_name=meal_option_name,
            meal_option_description=meal_option_description,
            portion_size=portion_size,
            calories=calories,
            is_custom=is_custom,
            logged_at=logged_at or self.clock(),
        )
        with self._unit_of_work() as db:
            db.add(meal)
            db.flush()
            return meal

    def meals_for_month(self, user_id: int, year: int, month: int) -> List[MealLog]:
        """Meals logged in the given calendar month (1-12), most recent first."""
        start = datetime(year, month, 1)
        end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        with self._unit_of_work() as db:
            return (
                db.query(MealLog)
                .filter(
                    MealLog.user_id == user_id,
                    MealLog.logged_at >= start,
                    MealLog.logged_at < end,
                )
                .order_by(MealLog.logged_at.desc(), MealLog.id.desc())
                .all()
            )

    def meals_for_day(self, user_id: int, day: date) -> List[MealLog]:
        """Meals logged on one day, in the order they were eaten."""
        start = datetime(day.year, day.month, day.day)
        with self._unit_of_work() as db:
            return (
                db.query(MealLog)
                .filter(
                    MealLog.user_id == user_id,
                    MealLog.logged_at >= start,
                    MealLog.logged_at < start + timedelta(days=1),
                )
                .order_by(MealLog.logged_at.asc(), MealLog.id.asc())
                .all()
            )

    def meals_history(self, user_id: int, limit: int = 50, offset: int = 0) -> List[MealLog]:
        with self._unit_of_work() as db:
            return (
                db.query(MealLog)
                .filter(MealLog.user_id == user_id)
                .order_by(MealLog.logged_at.desc(), MealLog.id.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )

    # =========================================================================
    # WATER INTAKE
    # =========================================================================

    @contextmanager
    def _water_lock(self, user_id: int, day: date) -> Iterator[None]:
        key = (user_id, day)
        with self._water_locks_guard:
            lock, holders = self._water_locks.get(key, (None, 0))
            lock = lock or threading.Lock()
            self._water_locks[key] = (lock, holders + 1)
        try:
            with lock:
                yield
        finally:
            with self._water_locks_guard:
                lock, holders = self._water_locks[key]
                if holders == 1:
                    del self._water_locks[key]
                else:
                    self._water_locks[key] = (lock, holders - 1)

    def upsert_water_intake(self, user_id: int, glasses: int, day: Optional[date] = None) -> WaterIntake:
        """
        Record the glass count for a day, collapsing repeated saves into one row.

        Check-then-write runs under the (user_id, day) lock. The unique
        constraint still guards against another process; on conflict the row
        is re-read and updated.
        """
        day = day or self.clock().date()
        with self._water_lock(user_id, day):
            try:
                return self._write_water_row(user_id, glasses, day)
            except DuplicateKeyError:
                # Race condition: another writer inserted the row first
                logger.info("Water intake row for user %s on %s appeared concurrently, updating", user_id, day)
                return self._write_water_row(user_id, glasses, day)

    def _write_water_row(self, user_id: int, glasses: int, day: date) -> WaterIntake:
        with self._unit_of_work() as db:
            now = self.clock()
            row = (
                db.query(WaterIntake)
                .filter(WaterIntake.user_id == user_id, WaterIntake.day == day)
                .first()
            )
            if row is None:
                row = WaterIntake(user_id=user_id, day=day, glasses=glasses, created_at=now, updated_at=now)
                db.add(row)
            else:
                row.glasses = glasses
                row.updated_at = now
            db.flush()
            return row

    def water_intake_for_day(self, user_id: int, day: Optional[date] = None) -> int:
        day = day or self.clock().date()
        with self._unit_of_work() as db:
            glasses = (
                db.query(WaterIntake.glasses)
                .filter(WaterIntake.user_id == user_id, WaterIntake.day == day)
                .scalar()
            )
            return glasses or 0
