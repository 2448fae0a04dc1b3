"""
In-memory student store standing in for the relational database.
"""

import math
from typing import Any, Dict, List, Optional

from shared.errors import NotFoundError
from .models import Student, StudentCreate, StudentUpdate


class StudentRepository:
    """Student records keyed by id."""

    def __init__(self, students: Optional[List[StudentCreate]] = None):
        self._students: Dict[int, Student] = {}
        self._next_id = 1
        for student in students or []:
            self._insert(student)

    def _insert(self, data: StudentCreate) -> Student:
        student = Student(id=self._next_id, **data.model_dump())
        self._students[student.id] = student
        self._next_id += 1
        return student

    async def list(
        self,
        page: int = 1,
        limit: int = 20,
        class_name: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Paginated listing ordered by id."""
        students = sorted(self._students.values(), key=lambda s: s.id)
        if class_name:
            students = [s for s in students if s.class_name == class_name]
        if search:
            needle = search.lower()
            students = [
                s for s in students
                if needle in s.first_name.lower() or needle in s.last_name.lower()
            ]

        total = len(students)
        start = (page - 1) * limit
        return {
            "data": [s.model_dump(mode="json") for s in students[start:start + limit]],
            "meta": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    async def get(self, student_id: int) -> Student:
        student = self._students.get(student_id)
        if student is None:
            raise NotFoundError("Student", student_id)
        return student

    async def create(self, data: StudentCreate) -> Student:
        return self._insert(data)

    async def update(self, student_id: int, data: StudentUpdate) -> Student:
        current = await self.get(student_id)
        updated = current.model_copy(update=data.model_dump(exclude_unset=True, exclude_none=True))
        self._students[student_id] = updated
        return updated

    async def delete(self, student_id: int) -> None:
        await self.get(student_id)
        del self._students[student_id]
