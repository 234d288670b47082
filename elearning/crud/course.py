"""CRUD operations for Course (read-only from the chat subsystem)."""

from typing import Optional

from sqlalchemy.orm import Session

from elearning.crud.base import CRUDBase
from elearning.models.course import Course


class CRUDCourse(CRUDBase[Course]):
    def get_active(self, db: Session, course_id: int) -> Optional[Course]:
        course = self.get(db, course_id)
        if course is None or not course.is_active:
            return None
        return course


crud_course = CRUDCourse(Course)
