# daily_outreach/db/models.py
from datetime import timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """DateTime that always round-trips as timezone-aware UTC (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    username = Column(String, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    website = Column(String, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(String, nullable=True)
    confidence_score = Column(Integer, nullable=True)  # 0-100 name/email confidence
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class ProductProfile(Base):
    """What the user sells; drives the email prompt."""

    __tablename__ = "product_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    product_service = Column(Text, nullable=True)
    primary_business_goal = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class SenderProfile(Base):
    __tablename__ = "sender_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    display_name = Column(String, nullable=False)
    title = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    is_default = Column(Boolean, default=False, server_default="false", nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class CustomerProfile(Base):
    """Ideal-customer description used to steer tone and angle."""

    __tablename__ = "customer_profiles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    label = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class OutreachPreferences(Base):
    __tablename__ = "outreach_preferences"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    enabled = Column(Boolean, default=True, nullable=False, index=True)
    schedule_days = Column(JSON, nullable=False, default=lambda: ["mon", "tue", "wed"])
    schedule_time = Column(String, nullable=False, default="09:00")  # local HH:MM
    timezone = Column(String, nullable=False, default="America/New_York")  # IANA id
    vacation_mode = Column(Boolean, default=False, server_default="false", nullable=False)
    vacation_start_date = Column(Date, nullable=True)
    vacation_end_date = Column(Date, nullable=True)
    active_product_id = Column(Integer, ForeignKey("product_profiles.id"), nullable=True)
    active_sender_profile_id = Column(Integer, ForeignKey("sender_profiles.id"), nullable=True)
    active_customer_profile_id = Column(Integer, ForeignKey("customer_profiles.id"), nullable=True)
    last_nudge_sent = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


class DailyBatch(Base):
    __tablename__ = "daily_outreach_batches"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    batch_date = Column(UTCDateTime, nullable=False, index=True)
    secure_token = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="pending")  # "pending", "partial", "complete", "expired"
    created_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)

    items = relationship("BatchItem", back_populates="batch", order_by="BatchItem.id")


class BatchItem(Base):
    __tablename__ = "daily_outreach_items"

    id = Column(Integer, primary_key=True)
    batch_id = Column(Integer, ForeignKey("daily_outreach_batches.id"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    email_subject = Column(Text, nullable=False)
    email_body = Column(Text, nullable=False)
    email_tone = Column(String, nullable=False, default="professional")
    status = Column(String, nullable=False, default="pending")  # "pending", "sent", "skipped", "edited"
    sent_at = Column(UTCDateTime, nullable=True)
    edited_content = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)

    batch = relationship("DailyBatch", back_populates="items")
    contact = relationship("Contact")
    company = relationship("Company")
