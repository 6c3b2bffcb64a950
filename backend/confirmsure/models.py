"""SQLAlchemy models."""
from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    CheckConstraint, Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from .database import Base
from .permissions import ROLE_VALUES

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")

PRODUCT_STATUSES = ("draft", "pending", "approved", "published", "archived")
MARKER_TYPES = ("color_dot", "pattern", "texture", "hologram", "uv_mark", "microprint")
AUDIT_EVENT_TYPES = ("auth", "product", "factory", "user", "system")
BATCH_OPERATION_TYPES = ("create_products", "update_products", "generate_qr_codes")
BATCH_OPERATION_STATUSES = ("pending", "processing", "completed", "completed_with_errors", "failed")
BATCH_ITEM_STATUSES = ("pending", "completed", "failed")


class Factory(Base):
    """Factory model (tenant)."""
    __tablename__ = "factories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), unique=True, nullable=False)
    location = Column(String(100), nullable=False)
    contact_email = Column(String(255), nullable=False)
    contact_phone = Column(String(32), nullable=True)
    address = Column(String(500), nullable=True)
    country = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    settings = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    users = relationship("UserProfile", back_populates="factory")
    products = relationship("Product", back_populates="factory")


class UserProfile(Base):
    """Authenticated user with role and factory assignment."""
    __tablename__ = "user_profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100), nullable=False)
    role = Column(String(32), nullable=False, default="factory_operator", index=True)
    # NULL only for admins.
    factory_id = Column(Uuid, ForeignKey("factories.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Uuid, ForeignKey("user_profiles.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(ROLE_VALUES), name="chk_user_profile_role"),
    )

    # Relationships
    factory = relationship("Factory", back_populates="users")


class Product(Base):
    """Product with its immutable QR identity."""
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Never reused, even after archival. The unique constraint is what guarantees it.
    qr_code = Column(String(16), nullable=False)
    product_name = Column(String(200), nullable=False)
    product_type = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    batch_id = Column(String(50), nullable=True, index=True)
    serial_number = Column(String(100), nullable=True)
    manufacturing_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="draft", index=True)
    factory_id = Column(Uuid, ForeignKey("factories.id"), nullable=False, index=True)
    created_by = Column(Uuid, ForeignKey("user_profiles.id"), nullable=False, index=True)
    approved_by = Column(Uuid, ForeignKey("user_profiles.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    meta_data = Column("metadata", JSONType, default=dict)  # 'metadata' is reserved by SQLAlchemy
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("qr_code", name="uq_products_qr_code"),
        CheckConstraint(status.in_(PRODUCT_STATUSES), name="chk_product_status"),
    )

    # Relationships
    factory = relationship("Factory", back_populates="products")
    markers = relationship(
        "AuthenticationMarker",
        back_populates="product",
        order_by="AuthenticationMarker.created_at",
    )


class AuthenticationMarker(Base):
    """Physical marker a consumer checks on the product."""
    __tablename__ = "authentication_markers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False, index=True)
    position = Column(String(200), nullable=False)
    color = Column(String(50), nullable=True)
    pattern = Column(String(200), nullable=True)
    size_mm = Column(Numeric(10, 3), nullable=True)
    coordinates = Column(JSONType, nullable=True)
    description = Column(String(500), nullable=True)
    verification_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(type.in_(MARKER_TYPES), name="chk_marker_type"),
    )

    product = relationship("Product", back_populates="markers")


class AuditLog(Base):
    """Append-only audit trail. Rows are never updated or deleted."""
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(String(20), nullable=False, index=True)
    event_name = Column(String(64), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("user_profiles.id"), nullable=True, index=True)
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(String(64), nullable=True)
    meta_data = Column("metadata", JSONType, default=dict)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(event_type.in_(AUDIT_EVENT_TYPES), name="chk_audit_event_type"),
        Index("idx_audit_logs_resource", "resource_type", "resource_id"),
    )


class BatchOperation(Base):
    """Bulk ingestion request; items are processed independently after admission."""
    __tablename__ = "batch_operations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    operation_type = Column(String(32), nullable=False)
    factory_id = Column(Uuid, ForeignKey("factories.id"), nullable=False, index=True)
    created_by = Column(Uuid, ForeignKey("user_profiles.id"), nullable=False, index=True)
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default="pending", index=True)
    error_details = Column(JSONType, default=list)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(operation_type.in_(BATCH_OPERATION_TYPES), name="chk_batch_operation_type"),
        CheckConstraint(status.in_(BATCH_OPERATION_STATUSES), name="chk_batch_operation_status"),
    )

    items = relationship(
        "BatchOperationItem",
        back_populates="operation",
        order_by="BatchOperationItem.row_number",
    )


class BatchOperationItem(Base):
    __tablename__ = "batch_operation_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_operation_id = Column(
        Uuid,
        ForeignKey("batch_operations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Row as presented in the source file (row 2 = first data row).
    row_number = Column(Integer, nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=True)
    item_data = Column(JSONType, nullable=False)
    result = Column(JSONType, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(BATCH_ITEM_STATUSES), name="chk_batch_item_status"),
    )

    operation = relationship("BatchOperation", back_populates="items")


class QrScan(Base):
    """Consumer scan of a product's public verification page."""
    __tablename__ = "qr_scans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False, index=True)
    scanned_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    referrer = Column(String(512), nullable=True)
    scan_result = Column(String(20), default="success")
