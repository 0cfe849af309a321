from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import false, select
from sqlalchemy.orm import Query, Session

from .models import Chapter, Student, Test, User, UserRole


@dataclass(frozen=True)
class Identity:
    user_id: int
    username: str
    role: UserRole
    center_id: int | None = None
    center_name: str | None = None
    student_id: int | None = None

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(
            user_id=user.id,
            username=user.username,
            role=user.role,
            center_id=user.center_id,
            center_name=user.center.center_name if user.center else None,
            student_id=user.student_id,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_parent(self) -> bool:
        return self.role == UserRole.PARENT

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "username": self.username,
            "role": self.role.value,
            "center_id": self.center_id,
            "center_name": self.center_name,
            "student_id": self.student_id,
        }


class TenantScope:
    """Row visibility for one authenticated identity.

    Center users see their own center, parents see their linked student and
    admins see every center unless ``center_id`` narrows the view. The
    requested center is ignored for non-admin identities.
    """

    def __init__(self, identity: Identity, center_id: int | None = None):
        self.identity = identity
        self.requested_center_id = center_id if identity.is_admin else None

    @property
    def center_id(self) -> int | None:
        if self.identity.is_admin:
            return self.requested_center_id
        return self.identity.center_id

    def _center_criteria(self, model: Any) -> list:
        if self.center_id is not None:
            return [model.center_id == self.center_id]
        if self.identity.is_admin:
            return []
        # A non-admin account without a center sees nothing.
        return [false()]

    def _student_criteria(self) -> list:
        if self.identity.is_parent:
            if self.identity.student_id is None:
                return [false()]
            return [Student.id == self.identity.student_id]
        return self._center_criteria(Student)

    def students(self, db: Session) -> Query:
        return db.query(Student).filter(*self._student_criteria())

    def scoped(self, db: Session, model: Any) -> Query:
        if model is Student:
            return self.students(db)

        query = db.query(model)
        by_student = hasattr(model, "student_id") and (self.identity.is_parent or not hasattr(model, "center_id"))
        if by_student:
            criteria = self._student_criteria()
            if criteria:
                query = query.filter(model.student_id.in_(select(Student.id).where(*criteria)))
            return query
        if hasattr(model, "center_id"):
            query = query.filter(*self._center_criteria(model))
        return query

    def require_student(self, db: Session, student_id: int) -> Student:
        student = self.students(db).filter(Student.id == student_id).first()
        if not student:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
        return student

    def require_students(self, db: Session, student_ids: list[int]) -> list[Student]:
        wanted = set(student_ids)
        students = self.students(db).filter(Student.id.in_(wanted)).all()
        if len(students) != len(wanted):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
        return students

    def require_test(self, db: Session, test_id: int) -> Test:
        test = self.scoped(db, Test).filter(Test.id == test_id).first()
        if not test:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Test not found")
        return test

    def require_chapter(self, db: Session, chapter_id: int) -> Chapter:
        chapter = self.scoped(db, Chapter).filter(Chapter.id == chapter_id).first()
        if not chapter:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chapter not found")
        return chapter

    def require_writer(self) -> None:
        if self.identity.is_parent:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Parents cannot modify records")

    def writable_center_id(self, requested: int | None = None) -> int:
        """Center that new rows are stamped with."""
        self.require_writer()
        if self.identity.is_admin:
            center_id = requested if requested is not None else self.requested_center_id
            if center_id is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="center_id is required")
            return center_id
        if self.identity.center_id is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No center assigned to this account")
        return self.identity.center_id
