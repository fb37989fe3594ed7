from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from quimita.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    cpf = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    address_complement = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    password_reset_token = Column(String, nullable=True, unique=True, index=True)
    password_reset_token_expires = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Subscription record. Only quimita.subscriptions.apply_record and the
    # conditional updates in quimita.repository write these columns.
    subscription_active = Column(Boolean, nullable=False, default=False)
    subscription_status = Column(String, nullable=False, default="inactive", index=True)
    subscription_external_id = Column(String, nullable=True, index=True)
    subscription_in_progress = Column(Boolean, nullable=False, default=False)
    subscription_created_at = Column(DateTime(timezone=True), nullable=True)
    subscription_updated_at = Column(DateTime(timezone=True), nullable=True)
