"""
User model for people who report incidents or administer dispatch.

Technicians live in their own table; users here are notification
recipients for SLA breaches and escalations.
"""
import enum
from uuid import UUID, uuid4

from sqlalchemy import String, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from facility_dispatch.models import Base, TimestampMixin


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    REPORTER = "reporter"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.REPORTER,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"
