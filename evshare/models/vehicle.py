from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from evshare.core.db import Base

class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    brand = Column(String, nullable=True)
    model = Column(String, nullable=True)
    vin = Column(String, unique=True, nullable=True)
    license_plate = Column(String, unique=True, nullable=True)
    fund_id = Column(Integer, ForeignKey("funds.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    co_owners = relationship("VehicleCoOwner", back_populates="vehicle")


class VehicleCoOwner(Base):
    __tablename__ = "vehicle_co_owners"
    __table_args__ = (
        UniqueConstraint("vehicle_id", "user_id", name="uq_vehicle_co_owner"),
    )
    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    ownership_percentage = Column(Numeric(5, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    vehicle = relationship("Vehicle", back_populates="co_owners")
