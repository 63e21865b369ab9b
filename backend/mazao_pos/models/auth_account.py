"""Password credentials for the self-hosted auth backend."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from mazao_pos.db.base import Base
from mazao_pos.models.mixins import CreatedAtMixin, StringPrimaryKeyMixin


class AuthAccount(StringPrimaryKeyMixin, CreatedAtMixin, Base):
    __tablename__ = "auth_accounts"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<AuthAccount {self.email}>"
