from sqlalchemy import Column, Integer, String, DateTime, func
from evshare.core.db import Base

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    fullname = Column(String, nullable=False)
    password = Column(String, nullable=False)
    role = Column(String, nullable=False, default="co_owner")  # 'co_owner' | 'staff' | 'admin'
    created_at = Column(DateTime(timezone=True), server_default=func.now())
