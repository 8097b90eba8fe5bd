from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Specialist(Base):
    """Provider directory profile; read-only from the coordination core"""

    __tablename__ = "specialists"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    specialties = Column(JSON, default=list, nullable=False)
    conditions_treated = Column(JSON, default=list, nullable=False)
    languages = Column(JSON, default=list, nullable=False)
    timezone = Column(String(64), nullable=True)
    video_consultation_enabled = Column(Boolean, default=True, nullable=False)
    in_person_enabled = Column(Boolean, default=False, nullable=False)
    consultation_fee_min = Column(Float, nullable=True)
    consultation_fee_max = Column(Float, nullable=True)
    accepts_insurance = Column(Boolean, default=False, nullable=False)
    average_rating = Column(Float, nullable=True)
    total_reviews = Column(Integer, default=0, nullable=False)
    is_accepting_patients = Column(Boolean, default=True, nullable=False)
    verification_status = Column(String(20), default="pending", nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User")


class AvailabilityWindow(Base):
    """
    Bookable window. Recurring windows set day_of_week (0 = Sunday);
    explicit windows set start_date/end_date instead.
    Shift-derived rows carry shift_assignment_id; manual rows never do.
    """

    __tablename__ = "availability_schedules"

    id = Column(Integer, primary_key=True, index=True)
    specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    location_override = Column(String(255), nullable=True)
    shift_assignment_id = Column(
        Integer, ForeignKey("shift_assignments.id"), nullable=True, index=True
    )
    created_at = Column(DateTime, server_default=func.now())


class TimeOffBlock(Base):
    __tablename__ = "specialist_time_off"

    id = Column(Integer, primary_key=True, index=True)
    specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=False, index=True)
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    reason = Column(String(255), nullable=True)
    status = Column(String(20), default="approved", nullable=False)
    shift_assignment_id = Column(
        Integer, ForeignKey("shift_assignments.id"), nullable=True, index=True
    )
    created_at = Column(DateTime, server_default=func.now())


class Appointment(Base):
    """Booked visit; only read by the ledger as busy time"""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    scheduled_at = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, default=30, nullable=False)
    status = Column(String(20), default="scheduled", nullable=False)


class ShiftListing(Base):
    __tablename__ = "shift_listings"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, nullable=True, index=True)
    title = Column(String(255), nullable=False)
    location = Column(String(255), nullable=True)
    specialty_required = Column(JSON, default=list, nullable=False)
    minimum_rating = Column(Float, nullable=True)
    urgency_level = Column(String(20), default="normal", nullable=False)  # normal, urgent, emergency
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    pay_rate = Column(Float, nullable=True)
    pay_currency = Column(String(3), default="USD", nullable=True)
    auto_accept_high_rated = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="open", nullable=False, index=True)  # open, filled, cancelled
    current_assignment_id = Column(Integer, nullable=True)
    assigned_specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=True)
    filled_at = Column(DateTime, nullable=True)
    applications_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class ShiftApplication(Base):
    __tablename__ = "shift_applications"
    __table_args__ = (
        UniqueConstraint("shift_listing_id", "specialist_id", name="uq_shift_application"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shift_listing_id = Column(Integer, ForeignKey("shift_listings.id"), nullable=False, index=True)
    specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=False, index=True)
    cover_message = Column(Text, nullable=True)
    match_score = Column(Float, nullable=True)
    match_factors = Column(JSON, nullable=True)
    # pending, auto_approved, accepted, rejected
    application_status = Column(String(20), default="pending", nullable=False)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class ShiftAssignment(Base):
    __tablename__ = "shift_assignments"
    __table_args__ = (
        # At most one live assignment per listing
        Index(
            "uq_active_assignment_per_listing",
            "shift_listing_id",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    shift_listing_id = Column(Integer, ForeignKey("shift_listings.id"), nullable=False)
    specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=False, index=True)
    application_id = Column(Integer, ForeignKey("shift_applications.id"), nullable=True)
    status = Column(String(20), default="confirmed", nullable=False)  # confirmed, completed, cancelled
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    listing = relationship("ShiftListing", foreign_keys=[shift_listing_id])
    specialist = relationship("Specialist")


class SearchCacheEntry(Base):
    __tablename__ = "specialist_search_cache"

    id = Column(Integer, primary_key=True, index=True)
    search_key = Column(String(64), unique=True, index=True, nullable=False)
    search_filters = Column(JSON, nullable=False)
    constraint_level = Column(String(32), nullable=False)
    relaxations_applied = Column(JSON, default=list, nullable=False)
    specialist_ids = Column(JSON, default=list, nullable=False)
    result_count = Column(Integer, default=0, nullable=False)
    cached_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    hit_count = Column(Integer, default=0, nullable=False)


class WaitlistEntry(Base):
    __tablename__ = "appointment_waitlist"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    specialty = Column(String(100), nullable=False, index=True)
    language = Column(String(50), nullable=True)
    specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=True)
    preferred_times = Column(JSON, default=list, nullable=False)  # morning, afternoon, evening
    preferred_date = Column(Date, nullable=True)
    urgency_score = Column(Float, default=0, nullable=False)
    max_wait_days = Column(Integer, default=30, nullable=False)
    status = Column(String(20), default="active", nullable=False, index=True)  # active, matched, expired
    match_results = Column(JSON, default=list, nullable=False)
    best_match_score = Column(Float, nullable=True)
    matched_at = Column(DateTime, nullable=True)
    notified_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False)


class OutboxMessage(Base):
    """Outbound side effect queued in the same transaction as the change that caused it"""

    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(40), nullable=False)  # calendar.create, calendar.delete, notification
    aggregate_type = Column(String(40), nullable=False)
    aggregate_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    payload = Column(JSON, default=dict, nullable=False)
    # pending, delivering, delivered, failed, superseded, dead
    status = Column(String(20), default="pending", nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    claimed_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
