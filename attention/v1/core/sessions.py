"""
Stored app sessions for installed shops.

Sessions are issued by the OAuth flow outside this service; the only thing
done with them here is deleting them when a shop uninstalls the app.
"""

from datetime import datetime

from sqlalchemy import TIMESTAMP, Boolean, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from attention.infra.database import Base


class ShopSession(Base):
    """OAuth session row for a shop."""

    __tablename__ = "shop_sessions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    shop: Mapped[str] = mapped_column(Text, nullable=False)
    state: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    expires_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (Index("ix_shop_sessions_shop", "shop"),)
