"""
User model for customer, dealer and admin accounts.

Accounts are provisioned by the identity service; this backend reads the
role for authorization and the free-text location for dealer matching.
"""

import enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mtaani_gas.database.base import BaseModel, enum_values
from mtaani_gas.services.dealers.location import Location


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    CLIENT = "client"
    DEALER = "dealer"
    ADMIN = "admin"


class User(BaseModel):
    """
    User account.

    Attributes:
        id: Unique user identifier (UUID)
        name: Display name
        email: Email address (unique)
        phone: Contact phone number
        role: client, dealer or admin
        location: Free-text address or JSON text with a ``ward`` key
        is_active: Account active status
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name",
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User email address",
    )

    phone: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="Contact phone number",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=UserRole.CLIENT,
        index=True,
        comment="User role for access control",
    )

    location: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Address text or JSON text with a ward key",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Account active status",
    )

    __table_args__ = (
        Index("ix_users_role_active", "role", "is_active"),
        {"comment": "Customer, dealer and admin accounts"},
    )

    @property
    def parsed_location(self) -> Location:
        """Structured view of the stored location text."""
        return Location.parse(self.location)

    @property
    def is_dealer(self) -> bool:
        return self.role == UserRole.DEALER
