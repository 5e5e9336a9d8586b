from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, String, UniqueConstraint
from app.database import Base
import uuid


def generate_owner_id():
    return f"own_{uuid.uuid4().hex[:8]}"


# All DateTime columns hold naive UTC; app/services/store.py converts at the boundary.


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    tid = Column(String, nullable=True)  # stamped by the state machine on creation
    license_number = Column(String, nullable=False, index=True)
    timestamp_in = Column(DateTime, nullable=False)
    timestamp_out = Column(DateTime, nullable=True)
    fee = Column(Float, nullable=False, default=0.0)
    paid = Column(Float, nullable=False, default=0.0)
    status = Column(String, nullable=True)  # Unpaid | Paid | Cancel
    is_cancel = Column(Boolean, nullable=True)
    is_overnight = Column(Boolean, nullable=True)
    is_edit = Column(Boolean, nullable=True)
    remark = Column(String, nullable=True)
    image_in = Column(String, nullable=True)
    image_out = Column(String, nullable=True)
    add_by = Column(String, nullable=True)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True)  # gateway intent id
    transaction_id = Column(String, ForeignKey("transactions.id"), nullable=False, index=True)
    pid = Column(String, nullable=True)
    amount = Column(Float, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    status = Column(String, nullable=True, index=True)
    reason = Column(String, nullable=True)
    paid_by = Column(String, nullable=True)
    client_secret = Column(String, nullable=True)
    is_edit = Column(Boolean, nullable=True)


class CarOwner(Base):
    __tablename__ = "car_owners"
    __table_args__ = (UniqueConstraint("license_number", "owner_id"),)

    id = Column(String, primary_key=True, default=generate_owner_id)
    license_number = Column(String, nullable=False, index=True)
    owner_id = Column(String, nullable=False)


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Float, nullable=True)
