"""Dining table model."""
from sqlalchemy import Column, String, Integer, Boolean
from cafe_pos.database import Base
import enum


class TableStatus(str, enum.Enum):
    """Usage status of a table. The takeaway pseudo-table has none."""
    EMPTY = 'empty'
    OCCUPIED = 'occupied'


class DiningTable(Base):
    """
    Dining table (or the takeaway pseudo-table).

    `status` is the last published usage status; the live status is owned
    by the in-memory table registry of the terminal.
    """

    __tablename__ = 'dining_table'

    id = Column(String(40), primary_key=True)
    name = Column(String(100), nullable=False)
    capacity = Column(Integer, nullable=False, default=4)
    status = Column(String(20), nullable=False, default=TableStatus.EMPTY.value)
    is_takeaway = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<DiningTable(id={self.id}, name='{self.name}', status={self.status})>"
