# portal/models/user.py
import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String, false, func
from sqlalchemy.orm import relationship

from portal.core.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'teacher', 'student')", name="ck_users_role"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)

    # Stored normalized (trimmed + lower-cased); uniqueness is enforced here, lookups normalize first.
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    # NULL for accounts that only ever signed in through an OAuth provider.
    password_hash = Column(String(255), nullable=True)

    role = Column(String(20), nullable=False, default="student", server_default="student")
    suspended = Column(Boolean, nullable=False, default=False, server_default=false())

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # user → linked identity providers
    oauth_accounts = relationship(
        "OAuthAccount",
        back_populates="user",
        cascade="all, delete-orphan",
    )
