from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from freecore.models.base import Base, TimestampMixin, UUIDMixin


class User(Base, UUIDMixin, TimestampMixin):
    """Minimal user record owned by the surrounding system.

    The engine only reads it: for bearer-token actors, project-role
    resolution (inactive users are never assigned), and display names.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="member")  # admin/member
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
