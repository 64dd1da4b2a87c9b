"""
User model (read-only for this service; accounts are managed elsewhere)
"""

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from turnstile.models.base import BaseModel


class User(BaseModel):
    __tablename__ = "users"

    username = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)

    reservations = relationship("Reservation", back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username})>"
