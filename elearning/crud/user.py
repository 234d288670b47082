"""CRUD operations for `User` model."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from elearning.crud.base import CRUDBase
from elearning.crud.conversation import escape_like
from elearning.models.course import Course
from elearning.models.user import User

logger = logging.getLogger(__name__)


class CRUDUser(CRUDBase[User]):
    def get_instructor_for_course(self, db: Session, course: Course) -> Optional[User]:
        """Resolve the teacher account behind a course.

        Lookup order: linked instructor account, exact name match, case-insensitive
        partial name match, then any active teacher.
        """
        if course.instructor_id:
            instructor = db.get(User, course.instructor_id)
            if instructor and instructor.role == "teacher" and instructor.is_active:
                return instructor

        teachers = select(User).where(User.role == "teacher", User.is_active.is_(True))

        if course.instructor:
            instructor = db.scalars(
                teachers.where(User.name == course.instructor).order_by(User.id).limit(1)
            ).first()
            if instructor:
                return instructor

            instructor = db.scalars(
                teachers.where(User.name.ilike(f"%{escape_like(course.instructor)}%", escape="\\"))
                .order_by(User.id)
                .limit(1)
            ).first()
            if instructor:
                return instructor

        instructor = db.scalars(teachers.order_by(User.id).limit(1)).first()
        if instructor:
            logger.warning(
                f"[CHAT] No teacher named '{course.instructor}' for course {course.id}; "
                f"falling back to teacher {instructor.id}"
            )
        return instructor


crud_user = CRUDUser(User)
