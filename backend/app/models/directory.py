# Read-only view of the people directory.
from sqlalchemy import Column, Integer, String

from app.core.database import Base


class Employee(Base):
    __tablename__ = "employees"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=True, index=True)   # linked login identity, if any
    manager_id = Column(Integer, nullable=True, index=True)    # employees.id of the line manager


class UserRoleGrant(Base):
    __tablename__ = "user_roles"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    role = Column(String(32), nullable=False, index=True)      # employee | manager | hr | admin
