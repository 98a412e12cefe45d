from sqlalchemy import Column, String
from .base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """Local mirror of an identity-provider user; only the customer link is written here"""
    __tablename__ = "users"

    id = Column(String(255), primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    customer_id = Column(String(255), nullable=True, unique=True)
