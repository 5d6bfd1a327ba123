"""SQLAlchemy ORM models for listings, bookings, cancellation requests and refund transactions"""

import uuid
from sqlalchemy import Column, String, Boolean, Float, DateTime, Integer, ForeignKey, Index, Numeric, Text, JSON, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from workspace_refunds.domain.states import ACTIVE_STATUSES
from workspace_refunds.utils.date_utils import utc_now

Base = declarative_base()

Money = Numeric(12, 2)

# Statuses that hold a booking; at most one request per booking may be in one
ACTIVE_REQUEST_CLAUSE = "status IN ({})".format(", ".join(sorted(f"'{s.value}'" for s in ACTIVE_STATUSES)))


class Listing(Base):
    """Bookable workspace; owns at most one cancellation policy"""

    __tablename__ = "listing"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    title = Column(Text, nullable=False)
    cancellation_policy = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    bookings = relationship("Booking", back_populates="listing")


class Booking(Base):
    """Client booking of a listing, including its payment reference and refund ledger"""

    __tablename__ = "booking"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    listing_id = Column(UUID(as_uuid=True), ForeignKey("listing.id"), nullable=False, index=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=True)
    status = Column(Text, nullable=False, default="pending_payment")
    payment_reference = Column(Text, nullable=True)
    payment_provider = Column(Text, nullable=True)
    refunds = Column(JSON, nullable=False, default=list)  # written by the payment gateway collaborator
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    listing = relationship("Listing", back_populates="bookings")


class CancellationRequest(Base):
    """One cancellation attempt on a booking, with its refund snapshot and resolution"""

    __tablename__ = "cancellation_request"
    __table_args__ = (
        Index("ix_cancellation_owner_status_requested", "owner_id", "status", "requested_at"),
        Index("ix_cancellation_client_requested", "client_id", "requested_at"),
        Index("ix_cancellation_status_automatic", "status", "is_automatic"),
        Index(
            "uq_cancellation_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=text(ACTIVE_REQUEST_CLAUSE),
            sqlite_where=text(ACTIVE_REQUEST_CLAUSE),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(UUID(as_uuid=True), ForeignKey("booking.id"), nullable=False, index=True)
    client_id = Column(Text, nullable=False)
    owner_id = Column(Text, nullable=False)
    listing_id = Column(UUID(as_uuid=True), ForeignKey("listing.id"), nullable=False)
    requested_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    # Booking snapshot
    booking_start_date = Column(DateTime(timezone=True), nullable=False)
    booking_end_date = Column(DateTime(timezone=True), nullable=False)
    booking_amount = Column(Money, nullable=False)
    booking_status = Column(Text, nullable=False)  # restored on rejection

    # Refund breakdown
    original_amount = Column(Money, nullable=False)
    refund_percentage = Column(Numeric(5, 2), nullable=False)
    refund_amount = Column(Money, nullable=False)
    processing_fee = Column(Money, nullable=False, default=0)
    final_refund = Column(Money, nullable=False)
    hours_until_booking = Column(Float, nullable=False)
    applied_tier = Column(JSON, nullable=True)

    cancellation_reason = Column(Text, nullable=False)
    cancellation_reason_other = Column(Text, nullable=True)

    status = Column(Text, nullable=False, default="pending", index=True)
    is_automatic = Column(Boolean, nullable=False, default=False)

    approved_by = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Text, nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    custom_refund_amount = Column(Money, nullable=True)
    custom_refund_note = Column(Text, nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    refund_transaction_id = Column(Text, nullable=True)
    gateway_response = Column(JSON, nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    booking = relationship("Booking")
    listing = relationship("Listing")
    transactions = relationship(
        "RefundTransaction", back_populates="cancellation_request", order_by="RefundTransaction.initiated_at"
    )


class RefundTransaction(Base):
    """Single attempt at moving refund money through the payment gateway"""

    __tablename__ = "refund_transaction"
    __table_args__ = (
        Index("ix_refund_transaction_status_initiated", "status", "initiated_at"),
        Index("ix_refund_transaction_client_status", "client_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cancellation_request_id = Column(
        UUID(as_uuid=True), ForeignKey("cancellation_request.id"), nullable=False, index=True
    )
    booking_id = Column(UUID(as_uuid=True), ForeignKey("booking.id"), nullable=False)
    client_id = Column(Text, nullable=False)
    owner_id = Column(Text, nullable=False)

    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False)
    payment_method = Column(Text, nullable=False)
    original_transaction_id = Column(Text, nullable=False)
    refund_transaction_id = Column(Text, nullable=True)

    status = Column(Text, nullable=False, default="pending")

    gateway_provider = Column(Text, nullable=False)
    gateway_response = Column(JSON, nullable=True)
    gateway_error = Column(Text, nullable=True)

    initiated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    cancellation_request = relationship("CancellationRequest", back_populates="transactions")
