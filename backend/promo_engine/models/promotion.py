import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_engine.db.base import Base


class PromotionScope(str, enum.Enum):
    GLOBAL_ORDER = "GLOBAL_ORDER"
    SPECIFIC_ITEMS = "SPECIFIC_ITEMS"


class PromotionType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    FREESHIP = "FREESHIP"
    FREESHIP_PERCENTAGE = "FREESHIP_PERCENTAGE"


SHIPPING_TYPES = frozenset({PromotionType.FREESHIP, PromotionType.FREESHIP_PERCENTAGE})


class Promotion(Base):
    __tablename__ = "promotions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scope: Mapped[PromotionScope] = mapped_column(
        Enum(PromotionScope, native_enum=False),
        nullable=False,
        default=PromotionScope.GLOBAL_ORDER,
    )
    type: Mapped[PromotionType] = mapped_column(
        Enum(PromotionType, native_enum=False),
        nullable=False,
        default=PromotionType.PERCENTAGE,
    )
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    max_discount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    min_order_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    per_user_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    targets: Mapped[list["PromotionTarget"]] = relationship(
        "PromotionTarget",
        back_populates="promotion",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PromotionTarget.position",
    )


class PromotionTarget(Base):
    __tablename__ = "promotion_targets"
    __table_args__ = (
        UniqueConstraint("promotion_id", "product_id", "variant_id", name="uq_promotion_targets_promotion_product_variant"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    promotion_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    specific_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    promotion: Mapped[Promotion] = relationship("Promotion", back_populates="targets")


class Redemption(Base):
    __tablename__ = "promotion_redemptions"
    __table_args__ = (UniqueConstraint("order_id", name="uq_promotion_redemptions_order"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    promotion_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promotions.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    shipping_discount_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    promotion: Mapped[Promotion] = relationship("Promotion")
