"""ORM model definitions describing the box office schema."""

from sqlalchemy import (
    Column, String, Text, Date, Time, DateTime, Enum, ForeignKey, Index, Integer,
    Numeric, JSON, Uuid, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
import enum
import uuid

Base = declarative_base()

TICKET_PREFIX = 'TKT'


def utcnow():
    return datetime.now(timezone.utc)


class ShowStatus(str, enum.Enum):
    """Show lifecycle states; only ACTIVE admits new bookings."""
    ACTIVE = 'ACTIVE'
    HOUSE_FULL = 'HOUSE_FULL'
    SHOW_STARTED = 'SHOW_STARTED'
    SHOW_DONE = 'SHOW_DONE'

    @property
    def is_bookable(self) -> bool:
        return self is ShowStatus.ACTIVE

    def can_transition_to(self, target: 'ShowStatus') -> bool:
        return target in SHOW_TRANSITIONS[self]


SHOW_TRANSITIONS = {
    ShowStatus.ACTIVE: {ShowStatus.HOUSE_FULL, ShowStatus.SHOW_STARTED, ShowStatus.SHOW_DONE},
    ShowStatus.HOUSE_FULL: {ShowStatus.ACTIVE, ShowStatus.SHOW_STARTED, ShowStatus.SHOW_DONE},
    ShowStatus.SHOW_STARTED: {ShowStatus.SHOW_DONE},
    ShowStatus.SHOW_DONE: set(),
}


class BookingStatus(str, enum.Enum):
    CONFIRMED = 'CONFIRMED'
    CANCELLED = 'CANCELLED'


class TicketStatus(str, enum.Enum):
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    REVOKED = 'REVOKED'


def ticket_date_prefix(show_date) -> str:
    """Prefix shared by every ticket code issued for a calendar date."""
    return f"{TICKET_PREFIX}-{show_date.strftime('%Y%m%d')}-"


def format_ticket_code(show_date, sequence: int, seat_code: str) -> str:
    return f"{ticket_date_prefix(show_date)}{sequence:04d}-{seat_code}"


def parse_ticket_sequence(ticket_code: str) -> int:
    """Extract the per-date sequence number from a ticket code."""
    # Seat codes may contain dashes, so only split off the fixed fields.
    parts = ticket_code.split('-', 3)
    if len(parts) != 4 or parts[0] != TICKET_PREFIX:
        raise ValueError(f"malformed ticket code: {ticket_code!r}")
    return int(parts[2])


class Layout(Base):
    __tablename__ = 'layouts'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    structure = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    shows = relationship('Show', back_populates='layout')


class Show(Base):
    __tablename__ = 'shows'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    show_date = Column(Date, nullable=False)
    show_time = Column(Time, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    layout_id = Column(Uuid, ForeignKey('layouts.id', ondelete='SET NULL'))
    status = Column(Enum(ShowStatus, name='show_status_enum'),
                    default=ShowStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    layout = relationship('Layout', back_populates='shows')
    bookings = relationship('Booking', back_populates='show')

    __table_args__ = (
        Index('idx_shows_status_date_time', 'status', 'show_date', 'show_time'),
    )

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.show_date, self.show_time)


class Customer(Base):
    __tablename__ = 'customers'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(20))
    address = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    bookings = relationship('Booking', back_populates='customer', passive_deletes=True)

    __table_args__ = (
        Index('idx_customers_name', 'name'),
        Index('idx_customers_email', 'email'),
    )


class Booking(Base):
    """One booking order per successful transaction; seats live on BookingSeat lines."""
    __tablename__ = 'bookings'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    show_id = Column(Uuid, ForeignKey('shows.id', ondelete='CASCADE'), nullable=False)
    customer_id = Column(Uuid, ForeignKey('customers.id', ondelete='SET NULL'))
    request_id = Column(String(100), unique=True)
    booked_by = Column(String(255), nullable=False)
    booking_time = Column(DateTime(timezone=True), default=utcnow)
    status = Column(Enum(BookingStatus, name='booking_status_enum'),
                    default=BookingStatus.CONFIRMED, nullable=False)
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)

    show = relationship('Show', back_populates='bookings')
    customer = relationship('Customer', back_populates='bookings')
    seats = relationship('BookingSeat', back_populates='booking',
                         order_by='BookingSeat.position')
    tickets = relationship('Ticket', back_populates='booking',
                           order_by='Ticket.ticket_code')

    __table_args__ = (
        Index('idx_bookings_show', 'show_id'),
        Index('idx_bookings_customer', 'customer_id'),
    )


class BookingSeat(Base):
    __tablename__ = 'booking_seats'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid, ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    show_id = Column(Uuid, ForeignKey('shows.id', ondelete='CASCADE'), nullable=False)
    seat_code = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    status = Column(Enum(BookingStatus, name='booking_seat_status_enum'),
                    default=BookingStatus.CONFIRMED, nullable=False)

    booking = relationship('Booking', back_populates='seats')

    __table_args__ = (
        Index('idx_booking_seats_show_seat', 'show_id', 'seat_code', 'status'),
    )


class Ticket(Base):
    __tablename__ = 'tickets'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid, ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    show_id = Column(Uuid, ForeignKey('shows.id', ondelete='CASCADE'), nullable=False)
    seat_code = Column(Text, nullable=False)
    ticket_code = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    generated_by = Column(String(255), nullable=False)
    generated_at = Column(DateTime(timezone=True), default=utcnow)
    status = Column(Enum(TicketStatus, name='ticket_status_enum'),
                    default=TicketStatus.ACTIVE, nullable=False)

    booking = relationship('Booking', back_populates='tickets')
    show = relationship('Show')

    __table_args__ = (
        UniqueConstraint('ticket_code', name='uq_tickets_ticket_code'),
        Index('idx_tickets_show', 'show_id'),
        Index('idx_tickets_status', 'status'),
    )


class TicketSequence(Base):
    """Last ticket sequence number issued for a date; its row is the date's lock."""
    __tablename__ = 'ticket_sequences'

    sequence_date = Column(Date, primary_key=True)
    last_sequence = Column(Integer, nullable=False, default=0)


class ActivityLog(Base):
    __tablename__ = 'activity_logs'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64))
    entity_name = Column(String(255))
    details = Column(JSON)
    performed_by = Column(String(255), nullable=False, default='system')
    performed_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('idx_activity_logs_performed_at', 'performed_at'),
        Index('idx_activity_logs_action', 'action'),
    )
