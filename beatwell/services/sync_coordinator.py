"""
Sync Coordinator: decides, per operation, whether the backend or the local
store answers, and normalizes every failure into the caller-facing taxonomy.

Policies:
- Remote-only: register, login, save-meal, save-water-intake, dashboard,
  month/date meals, profile, meal options, progress stats, chat.
  Offline or unreachable backend -> NoConnectivityError.
- Local-first: logout (remote invalidation is best effort) and
  save-custom-food (local write, then a fire-and-forget push).
- Hybrid: verify-session, meal history, today's meals, water intake read
  and update-profile try the backend first and fall back to the local store
  when the backend is unavailable (transport failure, timeout, 5xx or a
  garbled body). A 4xx answer is authoritative and is raised instead.

Every remote call is attempted exactly once and bounded by remote_timeout;
a timeout is treated like any other transport failure.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from beatwell.config import settings
from beatwell.models import MealType, User
from beatwell.services.auth.credentials import CredentialCodec, credential_codec
from beatwell.services.auth.session_context import SessionContext, SessionHandle
from beatwell.services.errors import (
    BeatWellError,
    DuplicateUserError,
    InvalidCredentialsError,
    NoConnectivityError,
    RemoteError,
    RemoteOperationError,
    RemoteStatusError,
    RemoteTransportError,
    SessionExpiredError,
    StorageUnavailableError,
    ValidationError,
)
from beatwell.services.gateway_schemas import (
    AuthPayload,
    ChatMessage,
    ChatReceipt,
    DashboardData,
    MealEntry,
    MealHistory,
    MealOption,
    MealOptionRef,
    MealSummary,
    Pagination,
    ProgressStats,
    RegisterRequest,
    SaveMealRequest,
    TodayMeals,
    UserProfile,
    WaterIntakeRecord,
)
from beatwell.services.local_store import LocalStore
from beatwell.services.remote_gateway import RemoteGateway


logger = logging.getLogger(__name__)

T = TypeVar("T")

REMOTE = "remote"
LOCAL = "local"

_REQUIRED_FIELD_PATTERNS = (
    re.compile(r"Field '(\w+)' is required"),
    re.compile(r"Missing required field: (\w+)"),
)


@dataclass
class SyncResult(Generic[T]):
    """Outcome of a coordinator operation and where the answer came from."""

    value: T
    message: str = ""
    offline: bool = False
    source: str = REMOTE


def _field_from_message(message: str) -> Optional[str]:
    """Best-effort guess of the offending field from a server validation message."""
    for pattern in _REQUIRED_FIELD_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)

    words = message.lower().split()
    candidates = ["_".join(words[:2]), words[0]] if words else []
    for candidate in candidates:
        if candidate in RegisterRequest.model_fields or candidate in User.PROFILE_FIELDS:
            return candidate
    return None


def backend_unavailable(error: RemoteError) -> bool:
    """True if the failure says nothing about the request itself."""
    if isinstance(error, RemoteStatusError):
        return error.status_code >= 500
    return True


def translate_remote_error(error: RemoteError, unauthorized: type = SessionExpiredError) -> BeatWellError:
    """
    Map a gateway failure onto the caller-facing taxonomy.

    Args:
        error: Failure raised by RemoteGateway
        unauthorized: Error class an HTTP 401 maps to for this operation
    """
    if isinstance(error, RemoteTransportError):
        return NoConnectivityError()
    if isinstance(error, RemoteStatusError):
        if error.status_code == 401:
            return unauthorized(error.message)
        if error.status_code == 409:
            return DuplicateUserError(error.message)
        if error.status_code == 400:
            return ValidationError(_field_from_message(error.message), error.message)
        return RemoteOperationError(error.message, error.status_code)
    return RemoteOperationError(error.message)


class SyncCoordinator:
    """Entry point for every session and data operation the client performs."""

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteGateway,
        context: SessionContext,
        codec: Optional[CredentialCodec] = None,
        is_online: Optional[Callable[[], bool]] = None,
        remote_timeout: Optional[float] = None,
        session_ttl_days: Optional[int] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.context = context
        self.codec = codec or credential_codec
        self.is_online = is_online or (lambda: True)
        self.remote_timeout = remote_timeout or settings.remote_timeout
        self.session_ttl_days = session_ttl_days or settings.session_ttl_days

        # Outstanding background pushes, kept referenced until they finish
        self._background: set[asyncio.Task] = set()

    # =========================================================================
    # PLUMBING
    # =========================================================================

    async def _call_remote(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """
        Run one gateway call under the coordinator timeout.

        The connectivity probe is consulted first so an offline device never
        touches the network.
        """
        if not self.is_online():
            raise RemoteTransportError(f"{operation}: device is offline")
        try:
            return await asyncio.wait_for(call(), timeout=self.remote_timeout)
        except asyncio.TimeoutError as e:
            raise RemoteTransportError(
                f"{operation}: no response within {self.remote_timeout}s"
            ) from e

    async def _remote_only(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        unauthorized: type = SessionExpiredError,
    ) -> T:
        try:
            return await self._call_remote(operation, call)
        except RemoteError as e:
            raise translate_remote_error(e, unauthorized) from e

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for outstanding background pushes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _require_session(self) -> SessionHandle:
        handle = self.context.current()
        if handle is None:
            raise SessionExpiredError("Not logged in")
        return handle

    def _today(self) -> date:
        return self.store.clock().date()

    @staticmethod
    def _meal_type(value) -> MealType:
        try:
            return MealType(value)
        except ValueError:
            raise ValidationError(
                "meal_type", "must be one of " + ", ".join(m.value for m in MealType)
            ) from None

    @staticmethod
    def _require(**fields) -> None:
        for field, value in fields.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(field, "This field is required")

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        confirm_password: Optional[str] = None,
        **profile,
    ) -> SyncResult[SessionHandle]:
        """
        Create an account on the backend and start a session for it.

        Remote-only. On success the user and session are cached locally and
        the Session Context is set.

        Raises:
            NoConnectivityError, DuplicateUserError, ValidationError
        """
        self._require(username=username, email=email, password=password)
        request = RegisterRequest(
            username=username.strip(),
            email=email.strip(),
            password=password,
            confirm_password=password if confirm_password is None else confirm_password,
            **{key: value for key, value in profile.items() if value is not None},
        )
        payload = await self._remote_only(
            "register", lambda: self.gateway.register(request), unauthorized=InvalidCredentialsError
        )
        handle = await self._establish_session(payload, password)
        return SyncResult(handle, "Registration successful")

    async def login(self, identifier: str, password: str) -> SyncResult[SessionHandle]:
        """
        Authenticate with a username or email.

        Remote-only. Prior local sessions for the user are replaced so the new
        token is the only one cached.

        Raises:
            NoConnectivityError, InvalidCredentialsError, ValidationError
        """
        self._require(username=identifier, password=password)
        payload = await self._remote_only(
            "login",
            lambda: self.gateway.login(identifier.strip(), password),
            unauthorized=InvalidCredentialsError,
        )
        handle = await self._establish_session(payload, password)
        return SyncResult(handle, "Login successful")

    async def _establish_session(self, payload: AuthPayload, password: str) -> SessionHandle:
        expires_at = payload.expires_at or self.store.clock() + timedelta(days=self.session_ttl_days)
        handle = SessionHandle(
            token=payload.session_token,
            user_id=payload.user_id,
            username=payload.username,
            email=payload.email,
            first_name=payload.first_name or "",
            last_name=payload.last_name or "",
            expires_at=expires_at,
        )

        password_hash = await asyncio.to_thread(self.codec.hash, password)
        try:
            self.store.save_user(
                payload.user_id,
                payload.username,
                payload.email,
                password_hash=password_hash,
                **payload.profile_fields(),
            )
            self.store.delete_all_sessions_for_user(payload.user_id)
            self.store.create_session(payload.user_id, payload.session_token, expires_at)
        except StorageUnavailableError as e:
            logger.warning("Could not cache session for user %s locally: %s", payload.user_id, e)

        try:
            self.context.set(handle)
        except OSError as e:
            logger.error("Could not persist session context: %s", e)
            raise StorageUnavailableError("Could not persist session") from e

        logger.info(
            "Session established for user %s (token %s...)",
            payload.user_id,
            payload.session_token[:8],
        )
        return handle

    async def logout(self) -> SyncResult[None]:
        """
        End the current session. Never raises.

        Local state is cleared first; the backend is then asked to invalidate
        the token and any failure there is logged and reported only through
        the result message.
        """
        handle = self.context.current()
        if handle is None:
            return SyncResult(None, "Logout successful", source=LOCAL)

        try:
            self.store.delete_session(handle.token)
            self.store.delete_all_sessions_for_user(handle.user_id)
        except StorageUnavailableError as e:
            logger.warning("Could not delete local sessions for user %s: %s", handle.user_id, e)
        self.context.clear()
        logger.info("Logged out user %s", handle.user_id)

        try:
            await self._call_remote("logout", lambda: self.gateway.logout(handle.token))
        except Exception as e:
            logger.warning("Remote logout failed for user %s: %s", handle.user_id, e)
            return SyncResult(None, "Logout successful (offline)", offline=True, source=LOCAL)
        return SyncResult(None, "Logout successful")

    async def verify_session(self) -> SyncResult[UserProfile]:
        """
        Confirm the current session is still valid and return the user's profile.

        Hybrid: when the backend is unavailable the local session table
        answers, applying the same expiry rule. A server rejection drops the
        cached session row. Never touches the Session Context.

        Raises:
            SessionExpiredError: no session, the server rejected the token,
                or the cached one has expired
        """
        handle = self._require_session()
        try:
            info = await self._call_remote("verify", lambda: self.gateway.verify_session(handle.token))
        except RemoteError as e:
            if not backend_unavailable(e):
                if isinstance(e, RemoteStatusError) and e.status_code == 401:
                    self._forget_session(handle)
                raise translate_remote_error(e) from e
            logger.warning("Remote session verification failed, using local cache: %s", e)
            found = self.store.find_valid_session(handle.token)
            if found is None:
                raise SessionExpiredError() from e
            user, _ = found
            return SyncResult(
                UserProfile.model_validate(user.to_profile()),
                "Session valid (offline)",
                offline=True,
                source=LOCAL,
            )

        profile = self._mirror_user(UserProfile(user_id=info.user_id, username=info.username, email=info.email))
        return SyncResult(profile, "Session valid")

    def _forget_session(self, handle: SessionHandle) -> None:
        try:
            self.store.delete_session(handle.token)
        except StorageUnavailableError as e:
            logger.warning("Could not drop rejected session for user %s: %s", handle.user_id, e)
        logger.info("Server rejected session for user %s (token %s...)", handle.user_id, handle.token[:8])

    def _mirror_user(self, profile: UserProfile) -> UserProfile:
        """Refresh the cached user row and return the merged profile."""
        try:
            user = self.store.save_user(
                profile.user_id, profile.username, profile.email, **profile.profile_fields()
            )
        except StorageUnavailableError as e:
            logger.warning("Could not refresh cached profile for user %s: %s", profile.user_id, e)
            return profile
        return UserProfile.model_validate(user.to_profile())

    def current_session(self) -> Optional[SessionHandle]:
        return self.context.current()

    # =========================================================================
    # PROFILE
    # =========================================================================

    async def read_profile(self) -> SyncResult[UserProfile]:
        handle = self._require_session()
        profile = await self._remote_only("profile", lambda: self.gateway.get_profile(handle.token))
        self._mirror_user(profile)
        return SyncResult(profile, "Profile retrieved successfully")

    async def update_profile(self, **fields) -> SyncResult[UserProfile]:
        """
        Change profile fields.

        Hybrid: the backend is written first and the result mirrored locally.
        If the backend is unavailable, the change is applied to the local
        cache and reported with an offline qualifier. A value or token the
        server rejects is raised and nothing is written locally.
        """
        handle = self._require_session()
        changes = {
            field: value
            for field, value in fields.items()
            if field in User.PROFILE_FIELDS and value is not None
        }
        if not changes:
            raise ValidationError(None, "No fields to update")

        try:
            profile = await self._call_remote(
                "update_profile", lambda: self.gateway.update_profile(handle.token, changes)
            )
        except RemoteError as e:
            if not backend_unavailable(e):
                raise translate_remote_error(e) from e
            logger.warning("Remote profile update failed, saving locally: %s", e)
            found = self.store.find_valid_session(handle.token)
            if found is None:
                raise SessionExpiredError() from e
            user, _ = found
            user = self.store.update_user(user.id, **changes)
            return SyncResult(
                UserProfile.model_validate(user.to_profile()),
                "Profile updated successfully (offline mode)",
                offline=True,
                source=LOCAL,
            )

        return SyncResult(self._mirror_user(profile), "Profile updated successfully")

    # =========================================================================
    # MEALS
    # =========================================================================

    async def read_meal_options(self, meal_type: str) -> SyncResult[list[MealOption]]:
        meal_type = self._meal_type(meal_type)
        options = await self._remote_only(
            "meal_options", lambda: self.gateway.get_meal_options(meal_type.value)
        )
        return SyncResult(options)

    async def save_meal(
        self,
        meal_type: str,
        option: MealOption,
        portion_size: float = 1.0,
        calories: Optional[int] = None,
    ) -> SyncResult[MealEntry]:
        """
        Log a predefined catalog option.

        Remote-only. Calories default to the option's calories scaled by the
        portion, rounded to the nearest integer. The saved meal is mirrored
        locally so offline history includes it.
        """
        handle = self._require_session()
        meal_type = self._meal_type(meal_type)
        if portion_size <= 0:
            raise ValidationError("portion_size", "must be greater than zero")
        if calories is None:
            calories = round(option.calories * portion_size)

        request = SaveMealRequest(
            user_id=handle.user_id,
            meal_type=meal_type,
            meal_option=MealOptionRef(id=option.id, name=option.name, description=option.description),
            portion_size=portion_size,
            calories=calories,
        )
        entry = await self._remote_only("save_meal", lambda: self.gateway.save_meal(request))

        try:
            self.store.insert_meal_log(
                handle.user_id,
                meal_type.value,
                option.name,
                calories,
                portion_size=portion_size,
                meal_option_id=option.id,
                meal_option_description=option.description,
                logged_at=entry.logged_at if entry else None,
            )
        except StorageUnavailableError as e:
            logger.warning("Meal saved remotely but not mirrored locally: %s", e)

        if entry is None:
            entry = MealEntry(
                meal_type=meal_type,
                meal_option_id=option.id,
                meal_option_name=option.name,
                meal_option_description=option.description,
                portion_size=portion_size,
                calories=calories,
            )
        return SyncResult(entry, "Meal logged successfully")

    async def save_custom_food(
        self,
        meal_type: str,
        name: str,
        calories: int,
        portion_size: float = 1.0,
        notes: str = "",
    ) -> SyncResult[MealEntry]:
        """
        Log a free-form food item.

        Local-first: the entry is committed to the local store and returned
        immediately. When online, the same entry is pushed to the backend in
        the background; the push's outcome is logged and never reported.

        Raises:
            StorageUnavailableError: the local write itself failed
        """
        handle = self._require_session()
        meal_type = self._meal_type(meal_type)
        self._require(name=name)
        if calories is None or calories < 0:
            raise ValidationError("calories", "must be zero or more")
        if portion_size <= 0:
            raise ValidationError("portion_size", "must be greater than zero")

        meal = self.store.insert_meal_log(
            handle.user_id,
            meal_type.value,
            name.strip(),
            calories,
            portion_size=portion_size,
            meal_option_description=notes,
            is_custom=True,
        )

        if self.is_online():
            request = SaveMealRequest(
                user_id=handle.user_id,
                meal_type=meal_type,
                meal_option=MealOptionRef(id=-1, name=meal.meal_option_name, description=notes),
                portion_size=portion_size,
                calories=calories,
                is_custom=True,
            )
            self._spawn(self._push_custom_food(meal.id, request))
        else:
            logger.info("Offline, custom food %s kept locally only", meal.id)

        return SyncResult(MealEntry.from_log(meal), "Custom food saved successfully", source=LOCAL)

    async def _push_custom_food(self, meal_id: int, request: SaveMealRequest) -> None:
        try:
            await self._call_remote("save_custom_food", lambda: self.gateway.save_meal(request))
        except Exception as e:
            logger.warning("Background sync of custom food %s failed: %s", meal_id, e)
        else:
            logger.debug("Custom food %s synced", meal_id)

    async def read_today_meals(self) -> SyncResult[TodayMeals]:
        handle = self._require_session()
        try:
            today = await self._call_remote(
                "today_meals", lambda: self.gateway.get_today_meals(handle.user_id)
            )
        except RemoteError as e:
            if not backend_unavailable(e):
                raise translate_remote_error(e) from e
            logger.warning("Remote today's meals failed, using local cache: %s", e)
            entries = [
                MealEntry.from_log(meal)
                for meal in self.store.meals_for_day(handle.user_id, self._today())
            ]
            return SyncResult(
                TodayMeals(meals=entries, summary=MealSummary.from_entries(entries)),
                offline=True,
                source=LOCAL,
            )
        return SyncResult(today)

    async def read_meal_history(self, limit: Optional[int] = None, offset: int = 0) -> SyncResult[MealHistory]:
        """
        Most-recent-first meal history.

        Hybrid: when the backend is unavailable the local meal log answers.
        """
        handle = self._require_session()
        limit = limit or settings.meal_history_limit
        try:
            history = await self._call_remote(
                "meal_history", lambda: self.gateway.get_meal_history(handle.token, limit, offset)
            )
        except RemoteError as e:
            if not backend_unavailable(e):
                raise translate_remote_error(e) from e
            logger.warning("Remote meal history failed, using local cache: %s", e)
            meals = self.store.meals_history(handle.user_id, limit=limit, offset=offset)
            pagination = Pagination(
                total=offset + len(meals),
                limit=limit,
                offset=offset,
                has_more=len(meals) == limit,
            )
            return SyncResult(
                MealHistory(meals=[MealEntry.from_log(meal) for meal in meals], pagination=pagination),
                offline=True,
                source=LOCAL,
            )
        return SyncResult(history)

    async def read_meals_for_month(self, year: int, month: int) -> SyncResult[list[MealEntry]]:
        handle = self._require_session()
        if not 1 <= month <= 12:
            raise ValidationError("month", "must be between 1 and 12")
        meals = await self._remote_only(
            "month_meals", lambda: self.gateway.get_meals_for_month(handle.user_id, year, month)
        )
        return SyncResult(meals)

    async def read_meals_for_date(self, day: date) -> SyncResult[list[MealEntry]]:
        handle = self._require_session()
        meals = await self._remote_only(
            "date_meals", lambda: self.gateway.get_meals_for_date(handle.user_id, day)
        )
        return SyncResult(meals)

    # =========================================================================
    # WATER
    # =========================================================================

    async def save_water_intake(self, glasses: int) -> SyncResult[WaterIntakeRecord]:
        """
        Record today's glass count.

        Remote-only. The accepted value is mirrored into the local upsert so
        read_water_intake can answer offline.
        """
        handle = self._require_session()
        if glasses is None or glasses < 0:
            raise ValidationError("glasses", "must be zero or more")

        record = await self._remote_only(
            "save_water",
            lambda: self.gateway.save_water_intake(handle.token, handle.user_id, glasses),
        )
        try:
            self.store.upsert_water_intake(handle.user_id, record.glasses, day=record.day or self._today())
        except StorageUnavailableError as e:
            logger.warning("Water intake saved remotely but not mirrored locally: %s", e)
        return SyncResult(record, "Water intake saved successfully")

    async def read_water_intake(self, day: Optional[date] = None) -> SyncResult[WaterIntakeRecord]:
        handle = self._require_session()
        day = day or self._today()
        try:
            record = await self._call_remote(
                "water_intake", lambda: self.gateway.get_water_intake(handle.user_id, day)
            )
        except RemoteError as e:
            if not backend_unavailable(e):
                raise translate_remote_error(e) from e
            logger.warning("Remote water intake read failed, using local cache: %s", e)
            glasses = self.store.water_intake_for_day(handle.user_id, day)
            return SyncResult(WaterIntakeRecord(glasses=glasses, day=day), offline=True, source=LOCAL)
        return SyncResult(record)

    # =========================================================================
    # HOME / PROGRESS
    # =========================================================================

    async def read_dashboard(self) -> SyncResult[DashboardData]:
        handle = self._require_session()
        dashboard = await self._remote_only("dashboard", lambda: self.gateway.get_dashboard(handle.token))
        return SyncResult(dashboard)

    async def read_progress_stats(self, days: int = 7) -> SyncResult[ProgressStats]:
        handle = self._require_session()
        if not 1 <= days <= 30:
            raise ValidationError("days", "must be between 1 and 30")
        stats = await self._remote_only(
            "progress_stats", lambda: self.gateway.get_progress_stats(handle.token, days)
        )
        return SyncResult(stats)

    # =========================================================================
    # ASSISTANT
    # =========================================================================

    async def ask_assistant(self, message: str) -> SyncResult[ChatReceipt]:
        """Relay a question to the diet assistant. The answer lands in chat history."""
        handle = self._require_session()
        self._require(message=message)
        receipt = await self._remote_only(
            "chat", lambda: self.gateway.send_chat_message(handle.token, message.strip())
        )
        return SyncResult(receipt, "Message sent successfully")

    async def read_chat_history(self) -> SyncResult[list[ChatMessage]]:
        handle = self._require_session()
        messages = await self._remote_only(
            "chat_history", lambda: self.gateway.get_chat_messages(handle.token)
        )
        return SyncResult(messages)

    # =========================================================================
    # CONNECTIVITY
    # =========================================================================

    async def check_connectivity(self) -> bool:
        """True if the backend health endpoint answers successfully."""
        try:
            await self._call_remote("ping", self.gateway.ping)
        except RemoteError as e:
            logger.info("Backend unreachable: %s", e)
            return False
        return True
