from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from educomm.models import Enrollment


class EnrollmentService:
    """Grants course access to buyers of course-linked kits."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def ensure_enrollment(self, user_id: int, course_id: int) -> Optional[Enrollment]:
        """
        Enroll the user in the course unless already enrolled.
        Returns the new enrollment, or None when one already existed.
        """
        existing = (
            self.db.query(Enrollment)
            .filter_by(user_id=user_id, course_id=course_id)
            .first()
        )
        if existing:
            return None

        enrollment = Enrollment(user_id=user_id, course_id=course_id)
        try:
            # Savepoint: a concurrent enrollment for the same pair must not abort the outer transaction
            with self.db.begin_nested():
                self.db.add(enrollment)
                self.db.flush()
        except IntegrityError:
            self.logger.info(
                "User %d already enrolled in course %d", user_id, course_id
            )
            return None

        self.logger.info("Enrolled user %d in course %d", user_id, course_id)
        return enrollment

    def enroll_for_courses(self, user_id: int, course_ids: Iterable[Optional[int]]) -> List[Enrollment]:
        created = []
        for course_id in sorted({cid for cid in course_ids if cid is not None}):
            enrollment = self.ensure_enrollment(user_id, course_id)
            if enrollment is not None:
                created.append(enrollment)
        return created
