# portal/models/oauth_account.py
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from portal.core.base import Base


class OAuthAccount(Base):
    __tablename__ = "oauth_accounts"
    __table_args__ = (
        # One local link per external identity...
        UniqueConstraint("provider", "provider_account_id", name="uq_oauth_accounts_provider_account"),
        # ...and at most one identity per provider for a user.
        UniqueConstraint("user_id", "provider", name="uq_oauth_accounts_user_provider"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    provider = Column(String(50), nullable=False)
    provider_account_id = Column(String(255), nullable=False)

    # Provider-issued credentials; opaque to us and never returned by the API.
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    id_token = Column(Text, nullable=True)
    token_type = Column(String(50), nullable=True)
    scope = Column(String(255), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    user = relationship("User", back_populates="oauth_accounts")
