from sqlalchemy import Column, Integer, String, Boolean, TIMESTAMP, CheckConstraint
from sqlalchemy.sql import func
from ..database import Base


USER_ROLES = ("user", "admin", "teacher")


class User(Base):
    __tablename__ = "users"
    
    # Primary Key
    id = Column(Integer, primary_key=True, index=True)
    
    # Profile
    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    avatar_url = Column(String(500))
    
    # Role & Authorization
    role = Column(String(50), nullable=False, default="user", index=True)
    
    # Account Status
    is_active = Column(Boolean, default=True, index=True)
    
    # Timestamps
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
    
    # Constraints
    __table_args__ = (
        CheckConstraint(
            "role IN ('user', 'admin', 'teacher')",
            name="check_user_role"
        ),
    )
    
    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
