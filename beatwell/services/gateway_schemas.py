"""
Pydantic records for every request and response exchanged with the backend.

Each response record corresponds to one RemoteGateway method. Bodies are
validated here so a malformed server response fails fast with a typed
error instead of leaking nulls into the coordinator.
"""

from datetime import date, datetime, timezone
from typing import Annotated, Any, Literal, Optional
from zoneinfo import ZoneInfo

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator

from beatwell.config import settings
from beatwell.models import MealType, User


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_naive_utc)]


def _server_local_to_utc(value: Optional[datetime]) -> Optional[datetime]:
    # users.php writes expiry with PHP date(), in the server's own timezone
    if value is not None and value.tzinfo is None:
        value = value.replace(tzinfo=ZoneInfo(settings.server_timezone))
    return _naive_utc(value)


ServerDatetime = Annotated[datetime, AfterValidator(_server_local_to_utc)]


# --- Envelope ---


class Envelope(BaseModel):
    """
    The outer wrapper every endpoint responds with.

    users/home/chat answer with {status, message, data}; meals/calendar answer
    with {success, message?, data | meals} and report failures as {error}.
    """

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    success: Optional[bool] = None
    message: str = ""
    error: Optional[str] = None
    data: Any = None

    @property
    def ok(self) -> bool:
        if self.status is not None:
            return self.status == "success"
        if self.success is not None:
            return self.success
        return self.error is None

    @property
    def error_message(self) -> str:
        return self.error or self.message or "Request failed"

    def payload(self, key: str = "data") -> Any:
        if key == "data":
            return self.data
        return (self.model_extra or {}).get(key)


# --- Users / sessions ---


class UserProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: int = Field(validation_alias=AliasChoices("user_id", "id"))
    username: str
    email: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    medical_conditions: Optional[str] = None
    allergies: Optional[str] = None
    height: Optional[float] = None
    weight: Optional[float] = None
    blood_pressure_systolic: Optional[int] = None
    blood_pressure_diastolic: Optional[int] = None
    diabetes_type: Optional[str] = None
    treatment_type: Optional[str] = None

    def profile_fields(self) -> dict:
        """Fields the server actually sent, in the shape LocalStore accepts."""
        return self.model_dump(include=set(User.PROFILE_FIELDS), exclude_none=True)


class AuthPayload(UserProfile):
    """data of a successful register or login."""

    session_token: str = Field(min_length=1)
    expires_at: Optional[ServerDatetime] = None


class SessionInfo(BaseModel):
    """data of a successful verify."""

    user_id: int
    username: str
    email: str = ""
    expires_at: Optional[ServerDatetime] = None


class RegisterRequest(BaseModel):
    action: Literal["register"] = "register"
    username: str
    email: str
    password: str
    confirm_password: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    date_of_birth: str = ""  # MM/DD/YYYY, as the backend validates it
    gender: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    emergency_contact_name: str = ""
    emergency_contact_phone: str = ""
    medical_conditions: str = ""
    allergies: str = ""


class LoginRequest(BaseModel):
    action: Literal["login"] = "login"
    username: str  # username or email
    password: str


# --- Meals ---


class MealOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    description: str = ""
    calories: int = 0
    image_url: str = Field(default="", validation_alias=AliasChoices("image_url", "imageUrl"))

    @field_validator("description", "image_url", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or ""


class MealEntry(BaseModel):
    """
    One logged meal as returned by the meals, calendar and home endpoints.

    The name arrives as meal_option_name or meal_name depending on the
    endpoint; logged_at arrives either as a timestamp string or as epoch
    milliseconds.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    meal_type: MealType
    meal_option_id: Optional[int] = None
    meal_option_name: str = Field(
        default="", validation_alias=AliasChoices("meal_option_name", "meal_name")
    )
    meal_option_description: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("meal_option_description", "description")
    )
    portion_size: float = 1.0
    calories: int = 0
    is_custom: bool = False
    logged_at: Optional[UtcDatetime] = None

    @field_validator("logged_at", mode="before")
    @classmethod
    def _parse_logged_at(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return value

    @classmethod
    def from_log(cls, meal) -> "MealEntry":
        """Build an entry from a local MealLog row."""
        return cls(
            id=meal.id,
            meal_type=meal.meal_type,
            meal_option_id=meal.meal_option_id,
            meal_option_name=meal.meal_option_name,
            meal_option_description=meal.meal_option_description,
            portion_size=meal.portion_size,
            calories=meal.calories,
            is_custom=meal.is_custom,
            logged_at=meal.logged_at,
        )


class MealOptionRef(BaseModel):
    id: int
    name: str
    description: str = ""


class SaveMealRequest(BaseModel):
    user_id: int
    meal_type: MealType
    meal_option: MealOptionRef
    portion_size: float = Field(gt=0)
    calories: int = Field(ge=0)
    is_custom: bool = False


class MealSummary(BaseModel):
    total_calories: int = 0
    meals_count: int = 0
    breakfast: list[MealEntry] = []
    lunch: list[MealEntry] = []
    dinner: list[MealEntry] = []

    @classmethod
    def from_entries(cls, entries: list[MealEntry]) -> "MealSummary":
        by_type = {meal_type.value: [] for meal_type in MealType}
        for entry in entries:
            by_type[entry.meal_type.value].append(entry)
        return cls(
            total_calories=sum(entry.calories for entry in entries),
            meals_count=len(entries),
            **by_type,
        )


class TodayMeals(BaseModel):
    meals: list[MealEntry] = []
    summary: MealSummary = MealSummary()


class Pagination(BaseModel):
    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False


class MealHistory(BaseModel):
    meals: list[MealEntry] = []
    pagination: Pagination = Pagination()


# --- Water ---


class WaterIntakeRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    glasses: int = Field(ge=0)
    day: Optional[date] = Field(default=None, validation_alias=AliasChoices("date", "day"))


class SaveWaterRequest(BaseModel):
    action: Literal["save_water"] = "save_water"
    session_token: str
    user_id: int
    glasses: int = Field(ge=0)


# --- Home ---


class MealStatus(BaseModel):
    breakfast: bool = False
    lunch: bool = False
    dinner: bool = False


class DailyProgress(BaseModel):
    calories_consumed: int = 0
    calories_goal: int = 2000
    water_intake: int = 0
    water_goal: int = 8
    meals_completed: int = 0
    meals_total: int = 3


class DashboardUser(BaseModel):
    id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class DashboardData(BaseModel):
    user: DashboardUser
    meal_status: MealStatus = MealStatus()
    progress: DailyProgress = DailyProgress()
    day: Optional[date] = Field(default=None, validation_alias=AliasChoices("date", "day"))


class ProgressAverages(BaseModel):
    calories: float = 0
    water: float = 0
    meals: float = 0


class DailyStat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    day: date = Field(validation_alias=AliasChoices("date", "day"))
    daily_calories: int = 0
    daily_water: int = 0
    meals_completed: int = 0


class ProgressStats(BaseModel):
    period_days: int = 7
    total_days_tracked: int = 0
    averages: ProgressAverages = ProgressAverages()
    daily_data: list[DailyStat] = []


# --- Chat ---


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    message: str
    sender_type: Literal["user", "ai"]
    created_at: Optional[datetime] = None


class ChatReceipt(BaseModel):
    message_id: int


# --- Health ---


class HealthStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    message: str = ""
    version: Optional[str] = None
    timestamp: Optional[str] = None
