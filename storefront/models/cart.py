from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from ..db import Base


class StoredCart(Base):
    __tablename__ = "cart"
    token = Column(String, primary_key=True)
    user_id = Column(String, index=True)
    payload = Column(Text, nullable=False)  # JSON: lista de CartLine
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
