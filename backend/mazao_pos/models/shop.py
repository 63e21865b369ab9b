"""Shop model (tenant)."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mazao_pos.db.base import Base
from mazao_pos.models.mixins import StringPrimaryKeyMixin, TimestampMixin


class Shop(StringPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "shops"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    logo: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(20))
    email: Mapped[str | None] = mapped_column(String(255))
    tax_id: Mapped[str | None] = mapped_column(String(50))
    currency: Mapped[str] = mapped_column(String(3), default="KES", nullable=False)
    receipt_footer: Mapped[str | None] = mapped_column(Text)
    shop_code: Mapped[str | None] = mapped_column(String(20), unique=True, index=True)

    # Relationships
    users = relationship("User", back_populates="shop")

    def __repr__(self) -> str:
        return f"<Shop {self.shop_code}: {self.name}>"
