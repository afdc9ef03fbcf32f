from sqlalchemy import Column, Integer, String, Text, DateTime, Float
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from beatwell.database import Base


class User(Base):
    """Locally cached user profile, keyed by the server-assigned user id."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=False)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=True)

    first_name = Column(String(50), nullable=False, default="")
    last_name = Column(String(50), nullable=False, default="")
    phone = Column(String(20), nullable=False, default="")
    date_of_birth = Column(String(10), nullable=False, default="")  # YYYY-MM-DD
    gender = Column(String(20), nullable=False, default="")
    address = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    zip_code = Column(String(20))
    emergency_contact_name = Column(String(100))
    emergency_contact_phone = Column(String(20))
    medical_conditions = Column(Text)
    allergies = Column(Text)

    # Health profile fields (added in a later migration, all nullable)
    height = Column(Float, nullable=True)  # cm
    weight = Column(Float, nullable=True)  # kg
    blood_pressure_systolic = Column(Integer, nullable=True)
    blood_pressure_diastolic = Column(Integer, nullable=True)
    diabetes_type = Column(String(20), nullable=True)  # 'none', 'type1', 'type2', ...
    treatment_type = Column(String(50), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Relationships
    sessions = relationship(
        "Session", back_populates="user", cascade="all, delete-orphan"
    )
    meal_logs = relationship(
        "MealLog", back_populates="user", cascade="all, delete-orphan"
    )
    water_intakes = relationship(
        "WaterIntake", back_populates="user", cascade="all, delete-orphan"
    )

    # Profile fields a caller may change through update_user / update-profile
    PROFILE_FIELDS = (
        "first_name",
        "last_name",
        "phone",
        "date_of_birth",
        "gender",
        "address",
        "city",
        "state",
        "zip_code",
        "emergency_contact_name",
        "emergency_contact_phone",
        "medical_conditions",
        "allergies",
        "height",
        "weight",
        "blood_pressure_systolic",
        "blood_pressure_diastolic",
        "diabetes_type",
        "treatment_type",
    )

    def to_profile(self) -> dict:
        """Profile fields plus identity, without the credential."""
        profile = {"user_id": self.id, "username": self.username, "email": self.email}
        for field in self.PROFILE_FIELDS:
            profile[field] = getattr(self, field)
        return profile
