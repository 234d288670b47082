from sqlalchemy import Column, Integer, String, Text, Boolean, TIMESTAMP, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ..database import Base


class Lesson(Base):
    __tablename__ = "lessons"
    
    id = Column(Integer, primary_key=True, index=True)
    
    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    
    title = Column(String(200), nullable=False)
    content = Column(Text)
    video_url = Column(String(500))
    duration = Column(Integer, default=0)  # minutes
    order = Column(Integer, nullable=False, default=1)
    is_published = Column(Boolean, default=True)
    
    # Timestamps
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint('course_id', 'order', name='uq_lesson_course_order'),
    )
    
    course = relationship("Course", back_populates="lessons")
