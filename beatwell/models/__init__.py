"""
Local store models for the BeatWell client.

Import all models here so Alembic can detect them for migrations.
"""

from beatwell.database import Base
from beatwell.models.user import User
from beatwell.models.session import Session
from beatwell.models.meal_log import MealLog, MealType
from beatwell.models.water_intake import WaterIntake

__all__ = [
    "Base",
    "User",
    "Session",
    "MealLog",
    "MealType",
    "WaterIntake",
]
