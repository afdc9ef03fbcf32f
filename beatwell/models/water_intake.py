from sqlalchemy import Column, Integer, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from beatwell.database import Base


class WaterIntake(Base):
    """Glasses of water for one user on one calendar day."""

    __tablename__ = "water_intake"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    glasses = Column(Integer, nullable=False, default=0)
    day = Column(Date, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Relationships
    user = relationship("User", back_populates="water_intakes")

    __table_args__ = (
        UniqueConstraint("user_id", "day", name="uq_water_intake_user_day"),
    )
