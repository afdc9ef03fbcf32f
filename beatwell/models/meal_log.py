import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, Float, Boolean
from sqlalchemy.orm import relationship

from beatwell.database import Base


class MealType(str, enum.Enum):
    """Meal slot a log entry belongs to."""

    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"


class MealLog(Base):
    """One logged meal. Immutable once created."""

    __tablename__ = "meal_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    meal_type = Column(String(20), nullable=False)  # breakfast|lunch|dinner
    meal_option_id = Column(Integer, nullable=True)  # None for custom food
    meal_option_name = Column(String(255), nullable=False)
    meal_option_description = Column(Text)  # Option description or custom notes
    portion_size = Column(Float, nullable=False, default=1.0)  # 0.5 = half portion
    calories = Column(Integer, nullable=False)
    is_custom = Column(Boolean, nullable=False, default=False)
    logged_at = Column(DateTime, nullable=False)  # naive UTC

    # Relationships
    user = relationship("User", back_populates="meal_logs")

    __table_args__ = (
        Index("idx_meal_logs_user_logged_at", "user_id", "logged_at"),
    )
