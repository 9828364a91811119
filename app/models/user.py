import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, String
from sqlalchemy.orm import relationship

from app.constants.roles import UserRole
from app.database import Base
from app.utils.clock import utcnow


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


# Staff user; accounts are managed elsewhere, only the fields the pipeline reads live here
class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.OPERATOR, index=True)
    status = Column(Enum(UserStatus, name="user_status"), nullable=False, default=UserStatus.ACTIVE)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    notes = relationship("LeadNote", back_populates="author")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
