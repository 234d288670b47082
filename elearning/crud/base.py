"""Generic CRUD base class for SQLAlchemy models."""

from __future__ import annotations

from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from elearning.database import Base


ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
	"""Reusable CRUD helper for SQLAlchemy models.

	All methods operate on model instances and return database objects, not schemas.
	"""

	def __init__(self, model: Type[ModelType]):
		self.model = model

	# ----- Read -----
	def get(self, db: Session, id: Any) -> Optional[ModelType]:
		"""Get one record by primary key."""
		return db.get(self.model, id)
