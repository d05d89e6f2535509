from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from leaveflow.database import Base


class Position(Base):
    __tablename__ = "positions"

    id = Column(Integer, primary_key=True, index=True)
    # Upper-case canonical names, e.g. "INTERN", "TEAM_LEAD", "HR MANAGER"
    name = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    level = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    department = relationship("Department", back_populates="positions")
    holders = relationship("User", back_populates="position")

    def __repr__(self):
        return f"<Position {self.name}>"
