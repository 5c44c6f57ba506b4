import uuid
from datetime import date, datetime, timezone
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base

ROLES = ("customer", "shop_owner", "government")
SHOP_STATUSES = ("pending", "approved", "rejected", "suspended")
COMPLIANCE_STATUSES = ("pending", "compliant", "non_compliant", "warning")
DOCUMENT_TYPES = (
    "business_license",
    "tax_certificate",
    "health_permit",
    "fire_safety_certificate",
    "trade_license",
    "owner_identity",
    "other",
)
DOCUMENT_STATUSES = ("pending", "approved", "rejected", "expired")
INSPECTION_TYPES = ("routine", "complaint", "follow_up", "renewal")
INSPECTION_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")
CHANNELS = ("email", "sms", "in_app")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Actor(Base):
    __tablename__ = "profiles"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    role = Column(String, nullable=False)  # customer, shop_owner, government
    email = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    full_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    shops = relationship("Shop", back_populates="owner", foreign_keys="Shop.owner_id")
    notifications = relationship("Notification", back_populates="user")


class Shop(Base):
    __tablename__ = "shops"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    address = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending", index=True)
    compliance_score = Column(Integer, nullable=False, default=0)
    compliance_status = Column(String, nullable=False, default="pending")
    rejection_reason = Column(String, nullable=True)
    suspension_reason = Column(String, nullable=True)
    suspended_until = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=True)
    last_compliance_check = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    owner = relationship("Actor", back_populates="shops", foreign_keys=[owner_id])
    documents = relationship(
        "Document", back_populates="shop", cascade="all, delete-orphan"
    )
    inspections = relationship(
        "Inspection", back_populates="shop", cascade="all, delete-orphan"
    )
    reviews = relationship(
        "Review", back_populates="shop", cascade="all, delete-orphan"
    )
    favorites = relationship(
        "Favorite", back_populates="shop", cascade="all, delete-orphan"
    )
    warnings = relationship(
        "ComplianceWarning", back_populates="shop", cascade="all, delete-orphan"
    )


class Document(Base):
    __tablename__ = "documents"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id = Column(
        UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_type = Column(String, nullable=False)
    file_url = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending", index=True)
    expiry_date = Column(Date, nullable=True)
    rejection_reason = Column(String, nullable=True)
    reviewed_by = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    expiry_warning_sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    shop = relationship("Shop", back_populates="documents")

    def effective_status(self, today: date | None = None) -> str:
        """Status as of ``today``; a lapsed expiry date wins over the stored status."""
        today = today or date.today()
        if self.status in ("rejected", "expired"):
            return self.status
        if self.expiry_date is not None and self.expiry_date < today:
            return "expired"
        return self.status


class Inspection(Base):
    __tablename__ = "inspections"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id = Column(
        UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    inspector_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    inspection_type = Column(String, nullable=False, default="routine")
    status = Column(String, nullable=False, default="scheduled", index=True)
    scheduled_date = Column(DateTime, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    score = Column(Integer, nullable=True)
    issues = Column(JSON, default=list)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    cancelled_by = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    shop = relationship("Shop", back_populates="inspections")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (sa.UniqueConstraint("user_id", "shop_id"),)
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id = Column(
        UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    shop = relationship("Shop", back_populates="reviews")


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (sa.UniqueConstraint("user_id", "shop_id"),)
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id = Column(
        UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    shop = relationship("Shop", back_populates="favorites")


class ComplianceWarning(Base):
    __tablename__ = "compliance_warnings"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id = Column(
        UUID(as_uuid=True), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    issued_by = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    severity = Column(String, nullable=False, default="medium")  # low, medium, high
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    shop = relationship("Shop", back_populates="warnings")


class ComplianceHistoryRecord(Base):
    __tablename__ = "compliance_history"
    __table_args__ = (sa.UniqueConstraint("shop_id", "sequence"),)
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # no ORM cascade: history outlives its shop
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="SET NULL"), nullable=True, index=True)
    sequence = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False)
    # score with the history factor held at 100
    base_score = Column(Integer, nullable=True)
    status = Column(String, nullable=False)
    factors = Column(JSON, default=dict)
    recommendations = Column(JSON, default=list)
    created_at = Column(DateTime, default=_utcnow)


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id", ondelete="SET NULL"), nullable=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    channels = Column(JSON, default=list)
    payload = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False)
    dismissed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    user = relationship("Actor", back_populates="notifications")
    logs = relationship("NotificationLog", back_populates="notification", order_by="NotificationLog.channel")


class NotificationLog(Base):
    __tablename__ = "notification_logs"
    __table_args__ = (sa.UniqueConstraint("notification_id", "channel"),)
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    notification_id = Column(UUID(as_uuid=True), ForeignKey("notifications.id"), nullable=False, index=True)
    channel = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending, sent, failed
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(String, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow)

    notification = relationship("Notification", back_populates="logs")


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "pref_type", "channel"),
    )
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"))
    pref_type = Column(String, nullable=False)
    channel = Column(String, nullable=False, default="in_app")
    enabled = Column(Boolean, default=True)


class NotificationTemplate(Base):
    __tablename__ = "notification_templates"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String, unique=True, nullable=False)
    title_template = Column(String, nullable=False)
    message_template = Column(Text, nullable=False)
    default_channels = Column(JSON, default=list)
    created_at = Column(DateTime, default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(UUID(as_uuid=True))
    outcome = Column(String, nullable=False, default="success")
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=_utcnow)
