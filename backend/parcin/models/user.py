"""
User model

Identity is issued by the external auth provider; this table mirrors the
fields the reservation flow reads (name/email for notifications, role for
operator routes).
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.orm import relationship

from parcin.core.database import Base


class UserRole(str, PyEnum):
    DRIVER = "DRIVER"
    OPERATOR = "OPERATOR"
    ADMIN = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=True)
    role = Column(Enum(UserRole, name="user_role"), default=UserRole.DRIVER, nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    reservations = relationship("Reservation", back_populates="user")
    lots = relationship("ParkingLot", back_populates="operator")

    @property
    def is_operator(self) -> bool:
        return self.role in (UserRole.OPERATOR, UserRole.ADMIN)
