from __future__ import annotations
import logging
import os
import time
from typing import Callable, Optional, Sequence, TypeVar

from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy.orm import Session

from app.models.directory import Employee, UserRoleGrant

logger = logging.getLogger(__name__)

DIRECTORY_MAX_RETRIES = int(os.getenv("DIRECTORY_MAX_RETRIES", "3"))
DIRECTORY_RETRY_SLEEP_SEC = float(os.getenv("DIRECTORY_RETRY_SLEEP_SEC", "0.1"))

T = TypeVar("T")


class DirectoryUnavailable(Exception):
    """The directory kept failing after all retries."""


def _with_retries(db: Session, what: str, fn: Callable[[], T]) -> T:
    for attempt in range(1, DIRECTORY_MAX_RETRIES + 1):
        try:
            return fn()
        except (OperationalError, DBAPIError) as e:
            logger.warning("directory lookup %s failed (attempt %d/%d): %s",
                           what, attempt, DIRECTORY_MAX_RETRIES, e)
            # a failed statement poisons the transaction; lookups run before any engine write
            db.rollback()
            if attempt == DIRECTORY_MAX_RETRIES:
                raise DirectoryUnavailable(what) from e
            time.sleep(DIRECTORY_RETRY_SLEEP_SEC)
    raise DirectoryUnavailable(what)


def get_user_id_for_employee(db: Session, employee_id: Optional[int]) -> Optional[str]:
    """Login identity linked to an employee, or None."""
    if employee_id is None:
        return None

    def q():
        return db.query(Employee.user_id).filter(Employee.id == employee_id).scalar()

    return _with_retries(db, f"user_id({employee_id})", q) or None


def get_manager_id_for_employee(db: Session, employee_id: int) -> Optional[int]:
    def q():
        return db.query(Employee.manager_id).filter(Employee.id == employee_id).scalar()

    return _with_retries(db, f"manager_id({employee_id})", q)


def find_holder_of_role(db: Session, roles: Sequence[str] = ("hr", "admin")) -> Optional[str]:
    """First user (by grant order) holding any of the roles."""
    def q():
        return (
            db.query(UserRoleGrant.user_id)
            .filter(UserRoleGrant.role.in_(list(roles)))
            .order_by(UserRoleGrant.id.asc())
            .limit(1)
            .scalar()
        )

    return _with_retries(db, f"role_holder({','.join(roles)})", q)


def get_manager_user_id(db: Session, employee_id: int) -> Optional[str]:
    """Identity of the employee's manager; None when there is no manager or no linked login."""
    manager_id = get_manager_id_for_employee(db, employee_id)
    if manager_id is None:
        return None
    return get_user_id_for_employee(db, manager_id)


def get_employee_id_for_user(db: Session, user_id: str) -> Optional[int]:
    def q():
        return db.query(Employee.id).filter(Employee.user_id == user_id).order_by(Employee.id.asc()).limit(1).scalar()

    return _with_retries(db, f"employee_for({user_id})", q)
