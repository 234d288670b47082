"""Course model. Course CRUD lives outside the chat subsystem; chat only reads it."""

from sqlalchemy import Column, Integer, String, Text, Boolean, Float, TIMESTAMP, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ..database import Base


class Course(Base):
    """Catalog course; scopes a student-instructor conversation."""
    
    __tablename__ = "courses"
    
    id = Column(Integer, primary_key=True, index=True)
    
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    level = Column(String(20), nullable=False)
    price = Column(Float, default=0)
    duration = Column(Integer, default=60)  # minutes
    rating = Column(Float, default=0)
    image_url = Column(String(500))
    
    # Instructor display name as shown in the catalog
    instructor = Column(String(255), nullable=False)
    # Resolved instructor account, when the catalog entry is linked to one
    instructor_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    
    is_active = Column(Boolean, default=True, index=True)
    
    # Timestamps
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint(
            "level IN ('Beginner', 'Intermediate', 'Advanced')",
            name="check_course_level"
        ),
        CheckConstraint("price >= 0", name="check_course_price"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="check_course_rating"),
    )
    
    # Relationships
    instructor_user = relationship("User", foreign_keys=[instructor_id])
    lessons = relationship(
        "Lesson",
        back_populates="course",
        order_by="Lesson.order",
        cascade="all, delete-orphan"
    )
