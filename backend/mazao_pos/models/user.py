"""User model: shop staff, with or without a password login."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mazao_pos.db.base import Base
from mazao_pos.models.mixins import CreatedAtMixin, StringPrimaryKeyMixin
from mazao_pos.models.role import UserRole


class User(StringPrimaryKeyMixin, CreatedAtMixin, Base):
    __tablename__ = "users"

    auth_id: Mapped[str | None] = mapped_column(String(64), unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    role: Mapped[str] = mapped_column(String(20), default=UserRole.CASHIER.value, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pin: Mapped[str | None] = mapped_column(String(255))
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Foreign keys
    shop_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("shops.id", ondelete="CASCADE"), index=True
    )

    # Relationships
    shop = relationship("Shop", back_populates="users")

    def __repr__(self) -> str:
        return f"<User {self.full_name} ({self.role})>"
