"""
HTTP client for the BeatWell backend.

One method per backend operation. Each call serializes a typed request,
applies the configured timeout, unwraps the response envelope and validates
the payload. Failures surface as RemoteTransportError, RemoteStatusError or
ResponseFormatError. Nothing here retries; the SyncCoordinator decides what
a failure means.
"""

import logging
from datetime import date
from typing import Any, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from beatwell.config import settings
from beatwell.services.errors import (
    RemoteStatusError,
    RemoteTransportError,
    ResponseFormatError,
)
from beatwell.services.gateway_schemas import (
    AuthPayload,
    ChatMessage,
    ChatReceipt,
    DashboardData,
    Envelope,
    HealthStatus,
    LoginRequest,
    MealEntry,
    MealHistory,
    MealOption,
    ProgressStats,
    RegisterRequest,
    SaveMealRequest,
    SaveWaterRequest,
    SessionInfo,
    TodayMeals,
    UserProfile,
    WaterIntakeRecord,
)


logger = logging.getLogger(__name__)


USERS = "users.php"
MEALS = "meals.php"
CALENDAR = "calendar.php"
HOME = "home.php"
CHAT = "chat.php"


class RemoteGateway:
    """Async client for the users, meals, calendar, home and chat endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")

        # health.php lives next to the api/ directory, not inside it
        root = self.base_url[: -len("/api")] if self.base_url.endswith("/api") else self.base_url
        self.health_url = f"{root}/health.php"

        timeout = httpx.Timeout(
            timeout=timeout or settings.remote_timeout,
            connect=connect_timeout or settings.remote_connect_timeout,
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url + "/",
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RemoteGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Envelope:
        """
        Send one request and return its envelope.

        Raises:
            RemoteTransportError: connection failure, timeout or undecodable transfer
            RemoteStatusError: non-2xx response or non-success envelope
            ResponseFormatError: 2xx response whose body is not an envelope
        """
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.RequestError as e:
            # TransportError plus DecodingError and TooManyRedirects
            raise RemoteTransportError(f"{method} {path} failed: {e.__class__.__name__}") from e

        try:
            envelope = Envelope.model_validate(response.json())
        except ValueError as e:
            # Covers both undecodable JSON and a body that is not an object
            if response.is_success:
                raise ResponseFormatError(f"{method} {path} returned a malformed body") from e
            raise RemoteStatusError(response.status_code, response.reason_phrase or None) from e

        if not response.is_success or not envelope.ok:
            logger.debug(
                "%s %s rejected with HTTP %d: %s",
                method,
                path,
                response.status_code,
                envelope.error_message,
            )
            raise RemoteStatusError(response.status_code, envelope.error_message)
        return envelope

    @staticmethod
    def _parse(schema: Any, payload: Any):
        try:
            return TypeAdapter(schema).validate_python(payload)
        except ValidationError as e:
            logger.warning("Response payload failed validation for %s: %s", schema, e)
            raise ResponseFormatError(f"Unexpected response shape: {e.error_count()} error(s)") from e

    # =========================================================================
    # USERS
    # =========================================================================

    async def register(self, request: RegisterRequest) -> AuthPayload:
        envelope = await self._request("POST", USERS, json=request.model_dump())
        return self._parse(AuthPayload, envelope.data)

    async def login(self, username: str, password: str) -> AuthPayload:
        request = LoginRequest(username=username, password=password)
        envelope = await self._request("POST", USERS, json=request.model_dump())
        return self._parse(AuthPayload, envelope.data)

    async def logout(self, session_token: str) -> None:
        await self._request("POST", USERS, json={"action": "logout", "session_token": session_token})

    async def verify_session(self, session_token: str) -> SessionInfo:
        envelope = await self._request(
            "GET", USERS, params={"action": "verify", "session_token": session_token}
        )
        return self._parse(SessionInfo, envelope.data)

    async def get_profile(self, session_token: str) -> UserProfile:
        envelope = await self._request(
            "GET", USERS, params={"action": "profile", "session_token": session_token}
        )
        return self._parse(UserProfile, envelope.data)

    async def update_profile(self, session_token: str, fields: dict) -> UserProfile:
        body = {"action": "update_profile", "session_token": session_token, **fields}
        envelope = await self._request("POST", USERS, json=body)
        return self._parse(UserProfile, envelope.data)

    # =========================================================================
    # MEALS
    # =========================================================================

    async def save_meal(self, request: SaveMealRequest) -> Optional[MealEntry]:
        """Log a meal. Returns the stored row when the server echoes it back."""
        envelope = await self._request("POST", f"{MEALS}/save", json=request.model_dump(mode="json"))
        if not envelope.data:
            return None
        return self._parse(MealEntry, envelope.data)

    async def get_meal_options(self, meal_type: str) -> list[MealOption]:
        envelope = await self._request("GET", MEALS, params={"type": meal_type})
        return self._parse(list[MealOption], envelope.data or [])

    async def get_today_meals(self, user_id: int) -> TodayMeals:
        envelope = await self._request("GET", f"{MEALS}/today", params={"user_id": user_id})
        return self._parse(TodayMeals, envelope.data or {})

    async def get_meal_history(self, session_token: str, limit: int = 50, offset: int = 0) -> MealHistory:
        params = {
            "action": "meal_history",
            "session_token": session_token,
            "limit": limit,
            "offset": offset,
        }
        envelope = await self._request("GET", HOME, params=params)
        return self._parse(MealHistory, envelope.data or {})

    # =========================================================================
    # CALENDAR
    # =========================================================================

    async def get_meals_for_month(self, user_id: int, year: int, month: int) -> list[MealEntry]:
        params = {"action": "month_meals", "user_id": user_id, "year": year, "month": month}
        envelope = await self._request("GET", CALENDAR, params=params)
        return self._parse(list[MealEntry], envelope.payload("meals") or [])

    async def get_meals_for_date(self, user_id: int, day: date) -> list[MealEntry]:
        params = {"action": "get_date_meals", "user_id": user_id, "date": day.isoformat()}
        envelope = await self._request("GET", CALENDAR, params=params)
        return self._parse(list[MealEntry], envelope.payload("meals") or [])

    async def save_water_intake(self, session_token: str, user_id: int, glasses: int) -> WaterIntakeRecord:
        request = SaveWaterRequest(session_token=session_token, user_id=user_id, glasses=glasses)
        envelope = await self._request("POST", CALENDAR, json=request.model_dump())
        return self._parse(WaterIntakeRecord, envelope.data or {"glasses": glasses})

    async def get_water_intake(self, user_id: int, day: date) -> WaterIntakeRecord:
        params = {"action": "water_intake", "user_id": user_id, "date": day.isoformat()}
        envelope = await self._request("GET", CALENDAR, params=params)
        return self._parse(WaterIntakeRecord, envelope.data)

    # =========================================================================
    # HOME
    # =========================================================================

    async def get_dashboard(self, session_token: str) -> DashboardData:
        envelope = await self._request(
            "GET", HOME, params={"action": "dashboard_data", "session_token": session_token}
        )
        return self._parse(DashboardData, envelope.data)

    async def get_progress_stats(self, session_token: str, days: int = 7) -> ProgressStats:
        params = {"action": "progress_stats", "session_token": session_token, "days": days}
        envelope = await self._request("GET", HOME, params=params)
        return self._parse(ProgressStats, envelope.data)

    # =========================================================================
    # CHAT
    # =========================================================================

    async def send_chat_message(self, session_token: str, message: str) -> ChatReceipt:
        """Relay a user message; the assistant's reply is stored server-side."""
        envelope = await self._request(
            "POST",
            CHAT,
            params={"session_token": session_token},
            json={"message": message, "sender_type": "user"},
        )
        return self._parse(ChatReceipt, envelope.data)

    async def get_chat_messages(self, session_token: str) -> list[ChatMessage]:
        envelope = await self._request(
            "GET", CHAT, params={"action": "messages", "session_token": session_token}
        )
        return self._parse(list[ChatMessage], envelope.data or [])

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def ping(self) -> HealthStatus:
        envelope = await self._request("GET", self.health_url)
        return self._parse(HealthStatus, envelope.model_dump())
