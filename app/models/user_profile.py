import enum

from sqlalchemy import (
    DECIMAL,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base_class import Base


class GenderType(enum.Enum):
    male = "male"
    female = "female"
    other = "other"


class UserProfile(Base):
    """Biometric record the nutrition calculator reads when a start request carries none."""

    __tablename__ = "user_profiles"

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    first_name = Column(String(50))
    last_name = Column(String(50))
    gender = Column(Enum(GenderType, name="gender_type"))
    height_cm = Column(DECIMAL(6, 2))
    weight_kg = Column(DECIMAL(6, 2))
    date_of_birth = Column(Date)
    dietary_restrictions = Column(JSON)
    allergies = Column(JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user = relationship("User", back_populates="profile")
