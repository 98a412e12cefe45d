from sqlalchemy import Column, String, Text
from .base import Base, TimestampMixin


class Setting(Base, TimestampMixin):
    """Admin-managed key/value settings"""
    __tablename__ = "settings"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
