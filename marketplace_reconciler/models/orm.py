"""SQLAlchemy table mappings.

Kept out of the models package namespace so configuration can load without
touching the database layer.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_reconciler.database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_guid() -> str:
    return str(uuid.uuid4())


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class OfferRow(Base):
    __tablename__ = "offers"

    offer_guid: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_guid)
    offer_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="")
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class PlanRow(Base):
    __tablename__ = "plans"
    __table_args__ = (UniqueConstraint("offer_guid", "plan_id", name="uq_plan_per_offer"),)

    plan_guid: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_guid)
    plan_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    offer_guid: Mapped[str] = mapped_column(ForeignKey("offers.offer_guid"), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    is_metering_supported: Mapped[bool] = mapped_column(Boolean, default=False)
    is_per_user: Mapped[bool] = mapped_column(Boolean, default=False)


class PlanAttributeRow(Base):
    __tablename__ = "plan_attributes"
    __table_args__ = (UniqueConstraint("plan_guid", "display_name", name="uq_attribute_per_plan"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_guid: Mapped[str] = mapped_column(ForeignKey("plans.plan_guid"), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)


class SubscriptionRow(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="")
    plan_id: Mapped[str] = mapped_column(String(255), nullable=False)
    plan_guid: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    offer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(64), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    purchaser_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    purchaser_tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class SubscriptionAuditLogRow(Base):
    __tablename__ = "subscription_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(
        ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    attribute: Mapped[str] = mapped_column(String(32), nullable=False)
    old_value: Mapped[str] = mapped_column(String(255), nullable=False)
    new_value: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class SubscriptionParameterRow(Base):
    __tablename__ = "subscription_parameters"
    __table_args__ = (
        UniqueConstraint("subscription_id", "plan_attribute_id", name="uq_parameter_value"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("subscriptions.id"), nullable=False)
    plan_attribute_id: Mapped[int] = mapped_column(ForeignKey("plan_attributes.id"), nullable=False)
    value: Mapped[str] = mapped_column(Text, default="")
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class ApplicationLogRow(Base):
    __tablename__ = "application_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class ProvisioningStatusRow(Base):
    __tablename__ = "provisioning_status_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_external_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
