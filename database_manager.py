"""Database coordination layer for layouts, shows, bookings and tickets."""

from sqlalchemy import create_engine, func, or_, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.exc import SQLAlchemyError
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import logging
import uuid

import seat_layout
from errors import (
    BookingAlreadyCancelled, BookingNotCancellable, BookingNotFound, CustomerNotFound,
    IdempotencyKeyReused, LayoutNotFound, PersistenceFailure, ShowNotFound, TicketNotFound,
    UnknownSeatCodes,
)
from locks import LockRegistry
from models import (
    Base, Layout, Show, Customer, Booking, BookingSeat, Ticket, TicketSequence, ActivityLog,
    ShowStatus, BookingStatus, TicketStatus,
    format_ticket_code, parse_ticket_sequence, ticket_date_prefix,
)

logger = logging.getLogger(__name__)

# Dialect inserts that support ON CONFLICT DO NOTHING for the sequence counter row
SEQUENCE_INSERTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}

DEMO_LAYOUT_NAME = 'Main Hall 360°'
DEMO_LAYOUT_STRUCTURE = {
    "sections": [
        {"name": "North", "rows": 5, "seatsPerRow": 10, "price": 100},
        {"name": "South", "rows": 5, "seatsPerRow": 10, "price": 100},
        {"name": "East", "rows": 3, "seatsPerRow": 8, "price": 150},
        {"name": "West", "rows": 3, "seatsPerRow": 8, "price": 150},
    ]
}


@dataclass
class BookingResult:
    """Outcome of a booking attempt; conflicts are data, not errors."""
    success: bool
    booking_id: Optional[uuid.UUID] = None
    tickets: List[Dict[str, Any]] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    replayed: bool = False

    @property
    def booking_count(self) -> int:
        return len(self.tickets)

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "conflicts": list(self.conflicts)}
        return {
            "success": True,
            "booking_id": str(self.booking_id),
            "tickets": list(self.tickets),
            "booking_count": self.booking_count,
        }


def normalize_seat_codes(seat_codes: Any) -> List[str]:
    """Validate a seat request and return the trimmed codes in request order."""
    if isinstance(seat_codes, str) or not isinstance(seat_codes, Iterable):
        raise ValueError("seat_codes must be a list of seat code strings")
    normalized = []
    for index, code in enumerate(seat_codes):
        if not isinstance(code, str) or not code.strip():
            raise ValueError(f"seat code at index {index} must be a non-empty string")
        normalized.append(code.strip())
    if not normalized:
        raise ValueError("seat_codes must contain at least one seat")
    if len(set(normalized)) != len(normalized):
        raise ValueError("seat_codes must not contain duplicates")
    return normalized


def _as_uuid(value, not_found_cls, label):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise not_found_cls(f"{label} {value} not found")


def _money(value) -> Optional[float]:
    return None if value is None else float(value)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _ticket_payload(ticket: Ticket) -> Dict[str, Any]:
    return {
        "booking_id": str(ticket.booking_id),
        "seat_code": ticket.seat_code,
        "ticket_code": ticket.ticket_code,
        "price": _money(ticket.price),
    }


def _ticket_detail(ticket: Ticket) -> Dict[str, Any]:
    return {
        **_ticket_payload(ticket),
        "status": ticket.status.value,
        "show_id": str(ticket.show_id),
        "show_title": ticket.show.title,
        "show_date": ticket.show.show_date.isoformat(),
        "booked_by": ticket.booking.booked_by,
        "generated_at": _iso(ticket.generated_at),
    }


def _layout_dict(layout: Layout) -> Dict[str, Any]:
    return {
        "id": str(layout.id),
        "name": layout.name,
        "structure": layout.structure,
        "total_seats": seat_layout.total_seats(layout.structure),
        "created_at": _iso(layout.created_at),
    }


def _show_dict(show: Show) -> Dict[str, Any]:
    return {
        "id": str(show.id),
        "title": show.title,
        "description": show.description,
        "date": show.show_date.isoformat(),
        "time": show.show_time.strftime('%H:%M'),
        "price": _money(show.price),
        "layout_id": str(show.layout_id) if show.layout_id else None,
        "status": show.status.value,
    }


def _customer_dict(customer: Customer) -> Dict[str, Any]:
    return {
        "id": str(customer.id),
        "name": customer.name,
        "email": customer.email,
        "phone": customer.phone,
        "address": customer.address,
        "created_at": _iso(customer.created_at),
        "updated_at": _iso(customer.updated_at),
    }


def _booking_dict(booking: Booking) -> Dict[str, Any]:
    return {
        "id": str(booking.id),
        "show_id": str(booking.show_id),
        "show_title": booking.show.title if booking.show else None,
        "customer_id": str(booking.customer_id) if booking.customer_id else None,
        "booked_by": booking.booked_by,
        "booking_time": _iso(booking.booking_time),
        "status": booking.status.value,
        "seat_codes": [line.seat_code for line in booking.seats],
        "tickets": [
            {**_ticket_payload(ticket), "status": ticket.status.value}
            for ticket in booking.tickets
        ],
        "cancelled_at": _iso(booking.cancelled_at),
        "cancellation_reason": booking.cancellation_reason,
    }


class DatabaseManager:
    """Thread-safe façade over SQLAlchemy sessions and the booking transaction."""

    def __init__(self, database_url: str, lock_timeout: float = 10.0,
                 show_duration_minutes: int = 30):
        if database_url.startswith('sqlite'):
            engine_options = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        else:
            engine_options = {
                "pool_size": 20,
                "max_overflow": 40,
                "pool_pre_ping": True,  # Reconnect if connection lost
                "pool_recycle": 3600,   # Recycle connections after 1 hour
            }
        self.engine = create_engine(database_url, echo=False, **engine_options)
        self.session_factory = scoped_session(sessionmaker(bind=self.engine))
        self.locks = LockRegistry(timeout=lock_timeout)
        self.show_duration = timedelta(minutes=show_duration_minutes)

        # Create tables
        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self):
        """Provide a transactional scope, committing on success and rolling back otherwise."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        self.session_factory.remove()
        self.engine.dispose()

    def log_activity(self, session, action: str, entity_type: str, entity_id=None,
                     entity_name: Optional[str] = None, details: Optional[Dict] = None,
                     performed_by: str = 'system') -> ActivityLog:
        """Record an activity entry inside the caller's transaction."""
        entry = ActivityLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            entity_name=entity_name,
            details=details,
            performed_by=performed_by,
        )
        session.add(entry)
        return entry

    # Layouts

    def create_layout(self, name: str, structure: Dict[str, Any],
                      created_by: str = 'system') -> Dict[str, Any]:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("layout name must be a non-empty string")
        seat_layout.validate_structure(structure)

        with self.get_session() as session:
            layout = Layout(name=name.strip(), structure=structure)
            session.add(layout)
            session.flush()
            self.log_activity(session, 'CREATE', 'LAYOUT', layout.id, layout.name,
                              {"total_seats": seat_layout.total_seats(structure)}, created_by)
            return _layout_dict(layout)

    def get_layout(self, layout_id) -> Dict[str, Any]:
        layout_id = _as_uuid(layout_id, LayoutNotFound, 'layout')
        with self.get_session() as session:
            layout = session.get(Layout, layout_id)
            if layout is None:
                raise LayoutNotFound(f"layout {layout_id} not found")
            result = _layout_dict(layout)
            result["seat_codes"] = seat_layout.seat_codes(layout.structure)
            return result

    def layout_seats(self, layout_id) -> List[Dict[str, Any]]:
        """Every seat of a layout with its section, row and section price."""
        layout = self.get_layout(layout_id)
        return [seat._asdict() for seat in seat_layout.generate_seats(layout["structure"])]

    def list_layouts(self) -> List[Dict[str, Any]]:
        with self.get_session() as session:
            return [_layout_dict(layout) for layout in
                    session.query(Layout).order_by(Layout.created_at).all()]

    def seed_demo_layout(self) -> bool:
        """Create the sample hall layout unless one with that name already exists."""
        with self.get_session() as session:
            if session.query(Layout).filter_by(name=DEMO_LAYOUT_NAME).first():
                return False
        self.create_layout(DEMO_LAYOUT_NAME, DEMO_LAYOUT_STRUCTURE)
        return True

    # Shows

    def create_show(self, title: str, show_date: date, show_time: time, price,
                    layout_id=None, description: Optional[str] = None,
                    created_by: str = 'system') -> Dict[str, Any]:
        if not isinstance(title, str) or not title.strip():
            raise ValueError("show title must be a non-empty string")
        price = Decimal(str(price))
        if price <= 0:
            raise ValueError("show price must be greater than 0")

        with self.get_session() as session:
            if layout_id is not None:
                layout_id = _as_uuid(layout_id, LayoutNotFound, 'layout')
                if session.get(Layout, layout_id) is None:
                    raise LayoutNotFound(f"layout {layout_id} not found")
            show = Show(
                title=title.strip(),
                description=description,
                show_date=show_date,
                show_time=show_time,
                price=price,
                layout_id=layout_id,
                status=ShowStatus.ACTIVE,
            )
            session.add(show)
            session.flush()
            self.log_activity(session, 'CREATE', 'SHOW', show.id, show.title,
                              {"date": show_date.isoformat()}, created_by)
            logger.info(f"Created show {show.title} on {show_date} ({show.id})")
            return _show_dict(show)

    def get_show(self, show_id) -> Dict[str, Any]:
        show_id = _as_uuid(show_id, ShowNotFound, 'show')
        with self.get_session() as session:
            show = session.get(Show, show_id)
            if show is None:
                raise ShowNotFound(f"show {show_id} not found")
            return _show_dict(show)

    def list_shows(self, status: Optional[ShowStatus] = None) -> List[Dict[str, Any]]:
        with self.get_session() as session:
            query = session.query(Show)
            if status is not None:
                query = query.filter(Show.status == status)
            shows = query.order_by(Show.show_date, Show.show_time).all()
            return [_show_dict(show) for show in shows]

    def _transition(self, session, show: Show, target: ShowStatus, performed_by: str):
        if not show.status.can_transition_to(target):
            raise ValueError(f"show cannot move from {show.status.value} to {target.value}")
        previous = show.status
        show.status = target
        self.log_activity(session, 'STATUS_CHANGE', 'SHOW', show.id, show.title,
                          {"from": previous.value, "to": target.value}, performed_by)
        logger.info(f"Show {show.title} ({show.id}) {previous.value} -> {target.value}")
        return previous

    def _confirmed_seat_count(self, session, show_id) -> int:
        return session.scalar(
            select(func.count(func.distinct(BookingSeat.seat_code))).where(
                BookingSeat.show_id == show_id,
                BookingSeat.status == BookingStatus.CONFIRMED,
            )
        ) or 0

    def _is_house_full(self, session, show: Show) -> bool:
        if show.layout is None:
            return False
        capacity = seat_layout.total_seats(show.layout.structure)
        return capacity > 0 and self._confirmed_seat_count(session, show.id) >= capacity

    def _scheduled_status(self, session, show: Show, now: datetime) -> ShowStatus:
        starts_at = show.starts_at
        if now > starts_at + self.show_duration:
            return ShowStatus.SHOW_DONE
        if now > starts_at:
            if show.status in (ShowStatus.ACTIVE, ShowStatus.HOUSE_FULL):
                return ShowStatus.SHOW_STARTED
            return show.status
        if show.status is ShowStatus.ACTIVE and self._is_house_full(session, show):
            return ShowStatus.HOUSE_FULL
        return show.status

    def refresh_show_statuses(self, now: Optional[datetime] = None) -> List[Dict[str, str]]:
        """Advance every unfinished show along its lifecycle.

        ``now`` is naive venue-local time, matching how show date and time are
        stored. Shows that finish get their ACTIVE tickets marked COMPLETED.
        """
        now = now or datetime.now()
        with self.get_session() as session:
            show_ids = session.scalars(
                select(Show.id).where(Show.status != ShowStatus.SHOW_DONE)
            ).all()

        transitions = []
        for show_id in show_ids:
            with self.locks.hold(f"show:{show_id}"):
                with self.get_session() as session:
                    show = session.get(Show, show_id)
                    target = self._scheduled_status(session, show, now)
                    if target is show.status:
                        continue
                    previous = self._transition(session, show, target, 'scheduler')
                    if target is ShowStatus.SHOW_DONE:
                        completed = session.query(Ticket).filter(
                            Ticket.show_id == show.id,
                            Ticket.status == TicketStatus.ACTIVE,
                        ).update({Ticket.status: TicketStatus.COMPLETED},
                                 synchronize_session=False)
                        logger.info(f"Marked {completed} tickets COMPLETED for {show.title}")
                    transitions.append({
                        "show_id": str(show.id),
                        "from": previous.value,
                        "to": target.value,
                    })
        return transitions

    # Booking ledger

    def seats_booked_for_show(self, show_id) -> set:
        show_id = _as_uuid(show_id, ShowNotFound, 'show')
        with self.get_session() as session:
            return set(session.scalars(
                select(BookingSeat.seat_code).where(
                    BookingSeat.show_id == show_id,
                    BookingSeat.status == BookingStatus.CONFIRMED,
                )
            ).all())

    def _issued_max(self, session, show_date: date) -> int:
        codes = session.scalars(
            select(Ticket.ticket_code).where(
                Ticket.ticket_code.like(f"{ticket_date_prefix(show_date)}%")
            )
        ).all()
        return max((parse_ticket_sequence(code) for code in codes), default=0)

    def _lock_sequence_row(self, session, show_date: date) -> TicketSequence:
        query = session.query(TicketSequence).filter(
            TicketSequence.sequence_date == show_date
        ).with_for_update()
        counter = query.first()
        if counter is not None:
            return counter

        # First booking of the date: seed from tickets already issued
        insert = SEQUENCE_INSERTS[session.get_bind().dialect.name]
        session.execute(
            insert(TicketSequence)
            .values(sequence_date=show_date, last_sequence=self._issued_max(session, show_date))
            .on_conflict_do_nothing(index_elements=['sequence_date'])
        )
        return query.one()

    def next_sequence(self, session, show_date: date, count: int = 1) -> int:
        """Reserve ``count`` consecutive ticket numbers for a date and return the first.

        The date's counter row is locked for the rest of the transaction, so
        bookers on the same date queue up across processes as well as threads.
        A rolled back booking releases its numbers with the rest of its writes.
        """
        counter = self._lock_sequence_row(session, show_date)
        first = counter.last_sequence + 1
        counter.last_sequence = counter.last_sequence + count
        session.flush()
        return first

    def _find_conflicts(self, session, show_id, seat_codes: List[str]) -> List[str]:
        taken = set(session.scalars(
            select(BookingSeat.seat_code).where(
                BookingSeat.show_id == show_id,
                BookingSeat.seat_code.in_(seat_codes),
                BookingSeat.status == BookingStatus.CONFIRMED,
            )
        ).all())
        return [code for code in seat_codes if code in taken]

    def _replay(self, session, request_id: Optional[str], show_id,
                seat_codes: List[str]) -> Optional[BookingResult]:
        if not request_id:
            return None
        booking = session.query(Booking).filter_by(request_id=request_id).first()
        if booking is None:
            return None
        booked_codes = {line.seat_code for line in booking.seats}
        if booking.show_id != show_id or booked_codes != set(seat_codes):
            raise IdempotencyKeyReused(
                f"request {request_id} already booked other seats; use a new request id"
            )
        logger.info(f"Replaying booking {booking.id} for request {request_id}")
        return BookingResult(
            success=True,
            booking_id=booking.id,
            tickets=[_ticket_payload(ticket) for ticket in booking.tickets],
            replayed=True,
        )

    def book_seats(self, show_id, seat_codes, booked_by: str, customer_id=None,
                   request_id: Optional[str] = None) -> BookingResult:
        """Book every requested seat on a show, or none of them.

        Concurrent calls for the same show are serialized by the show lock and
        calls for the same date by the date lock plus the date's sequence row,
        which guard the ticket sequence. Seats already CONFIRMED come back as
        ``conflicts`` with nothing written. A repeated ``request_id`` for the
        same show and seats returns the original booking; for anything else it
        raises ``IdempotencyKeyReused``.
        """
        seat_codes = normalize_seat_codes(seat_codes)
        if not isinstance(booked_by, str) or not booked_by.strip():
            raise ValueError("booked_by must be a non-empty string")
        booked_by = booked_by.strip()
        show_id = _as_uuid(show_id, ShowNotFound, 'show')
        if customer_id is not None:
            customer_id = _as_uuid(customer_id, CustomerNotFound, 'customer')

        try:
            with self.get_session() as session:
                replayed = self._replay(session, request_id, show_id, seat_codes)
                if replayed is not None:
                    return replayed
                show = session.get(Show, show_id)
                if show is None or not show.status.is_bookable:
                    raise ShowNotFound(f"show {show_id} not found or not open for booking")
                if show.layout is not None:
                    known = set(seat_layout.seat_codes(show.layout.structure))
                    unknown = [code for code in seat_codes if code not in known]
                    if unknown:
                        raise UnknownSeatCodes(unknown)
                if customer_id is not None and session.get(Customer, customer_id) is None:
                    raise CustomerNotFound(f"customer {customer_id} not found")
                show_date = show.show_date

            with self.locks.hold(f"show:{show_id}", f"date:{show_date.isoformat()}"):
                with self.get_session() as session:
                    return self._book_locked(session, show_id, seat_codes, booked_by,
                                             customer_id, request_id)
        except SQLAlchemyError as e:
            logger.error(f"Book seats error: {e}")
            raise PersistenceFailure(f"booking failed and was rolled back: {e}") from e

    def _book_locked(self, session, show_id, seat_codes: List[str], booked_by: str,
                     customer_id, request_id: Optional[str]) -> BookingResult:
        # Step 1: Lock the show row; serializes bookers across processes on PostgreSQL
        show = session.query(Show).filter(Show.id == show_id).with_for_update().first()

        replayed = self._replay(session, request_id, show_id, seat_codes)
        if replayed is not None:
            return replayed

        if show is None or not show.status.is_bookable:
            raise ShowNotFound(f"show {show_id} not found or not open for booking")

        # Step 2: Conflict check against CONFIRMED ledger lines
        conflicts = self._find_conflicts(session, show.id, seat_codes)
        if conflicts:
            logger.info(f"Booking rejected for {show.title}: conflicts {conflicts}")
            return BookingResult(success=False, conflicts=conflicts)

        # Step 3: Mint tickets from one sequence base, one per seat in request order
        sequence = self.next_sequence(session, show.show_date, len(seat_codes))
        booking = Booking(
            show_id=show.id,
            customer_id=customer_id,
            request_id=request_id or None,
            booked_by=booked_by,
            status=BookingStatus.CONFIRMED,
        )
        session.add(booking)
        session.flush()

        tickets = []
        for position, seat_code in enumerate(seat_codes):
            session.add(BookingSeat(
                booking_id=booking.id,
                show_id=show.id,
                seat_code=seat_code,
                position=position,
                status=BookingStatus.CONFIRMED,
            ))
            ticket = Ticket(
                booking_id=booking.id,
                show_id=show.id,
                seat_code=seat_code,
                ticket_code=format_ticket_code(show.show_date, sequence + position, seat_code),
                price=show.price,
                generated_by=booked_by,
                status=TicketStatus.ACTIVE,
            )
            session.add(ticket)
            tickets.append(ticket)

        self.log_activity(session, 'BOOKING', 'BOOKING', booking.id, show.title, {
            "seat_codes": seat_codes,
            "ticket_codes": [ticket.ticket_code for ticket in tickets],
        }, booked_by)
        session.flush()

        # Step 4: Opportunistic house-full detection
        if self._is_house_full(session, show):
            self._transition(session, show, ShowStatus.HOUSE_FULL, booked_by)

        logger.info(
            f"Booked {len(tickets)} seat(s) for {show.title} by {booked_by}: "
            f"{tickets[0].ticket_code}..{tickets[-1].ticket_code}"
        )
        return BookingResult(
            success=True,
            booking_id=booking.id,
            tickets=[_ticket_payload(ticket) for ticket in tickets],
        )

    def cancel_booking(self, booking_id, reason: Optional[str] = None,
                       cancelled_by: str = 'system') -> Dict[str, Any]:
        """Cancel a booking, freeing its seats and revoking its tickets. Rows are kept."""
        booking_id = _as_uuid(booking_id, BookingNotFound, 'booking')
        try:
            with self.get_session() as session:
                booking = session.get(Booking, booking_id)
                if booking is None:
                    raise BookingNotFound(f"booking {booking_id} not found")
                show_id = booking.show_id

            with self.locks.hold(f"show:{show_id}"):
                with self.get_session() as session:
                    booking = session.query(Booking).filter(
                        Booking.id == booking_id
                    ).with_for_update().first()
                    if booking.status is BookingStatus.CANCELLED:
                        raise BookingAlreadyCancelled(f"booking {booking_id} is already cancelled")
                    if booking.show.status is ShowStatus.SHOW_DONE:
                        raise BookingNotCancellable(
                            f"booking {booking_id} belongs to a finished show"
                        )

                    booking.status = BookingStatus.CANCELLED
                    booking.cancelled_at = datetime.now(timezone.utc)
                    booking.cancellation_reason = reason
                    for line in booking.seats:
                        line.status = BookingStatus.CANCELLED
                    for ticket in booking.tickets:
                        if ticket.status is TicketStatus.ACTIVE:
                            ticket.status = TicketStatus.REVOKED

                    self.log_activity(session, 'CANCELLATION', 'BOOKING', booking.id,
                                      booking.show.title, {
                                          "seat_codes": [line.seat_code for line in booking.seats],
                                          "reason": reason,
                                      }, cancelled_by)
                    session.flush()

                    if booking.show.status is ShowStatus.HOUSE_FULL:
                        self._transition(session, booking.show, ShowStatus.ACTIVE, cancelled_by)

                    logger.info(f"Cancelled booking {booking.id} by {cancelled_by}: {reason}")
                    return _booking_dict(booking)
        except SQLAlchemyError as e:
            logger.error(f"Cancel booking error: {e}")
            raise PersistenceFailure(f"cancellation failed and was rolled back: {e}") from e

    def get_booking(self, booking_id) -> Dict[str, Any]:
        booking_id = _as_uuid(booking_id, BookingNotFound, 'booking')
        with self.get_session() as session:
            booking = session.get(Booking, booking_id)
            if booking is None:
                raise BookingNotFound(f"booking {booking_id} not found")
            return _booking_dict(booking)

    def list_bookings(self, show_id=None, customer_id=None) -> List[Dict[str, Any]]:
        with self.get_session() as session:
            query = session.query(Booking)
            if show_id is not None:
                query = query.filter(Booking.show_id == _as_uuid(show_id, ShowNotFound, 'show'))
            if customer_id is not None:
                query = query.filter(Booking.customer_id ==
                                     _as_uuid(customer_id, CustomerNotFound, 'customer'))
            return [_booking_dict(booking) for booking in
                    query.order_by(Booking.booking_time.desc()).all()]

    # Tickets

    def get_ticket(self, ticket_code: str) -> Dict[str, Any]:
        """Resolve a ticket code, as scanned at the door, to its booking and status."""
        with self.get_session() as session:
            ticket = session.query(Ticket).filter(
                Ticket.ticket_code == (ticket_code or '').strip()
            ).first()
            if ticket is None:
                raise TicketNotFound(f"ticket {ticket_code} not found")
            return _ticket_detail(ticket)

    def find_tickets(self, search: Optional[str] = None,
                     status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Search tickets by ticket code, seat, show title, booker or booking id."""
        with self.get_session() as session:
            query = session.query(Ticket).join(Booking, Ticket.booking_id == Booking.id) \
                .join(Show, Ticket.show_id == Show.id)
            if status:
                query = query.filter(Ticket.status == TicketStatus(status.upper()))
            if search and search.strip():
                term = search.strip()
                pattern = f"%{term}%"
                clauses = [
                    Ticket.ticket_code.ilike(pattern),
                    Ticket.seat_code.ilike(pattern),
                    Show.title.ilike(pattern),
                    Booking.booked_by.ilike(pattern),
                ]
                try:
                    clauses.append(Ticket.booking_id == uuid.UUID(term))
                except ValueError:
                    pass
                query = query.filter(or_(*clauses))
            tickets = query.order_by(Show.show_date.desc(), Ticket.ticket_code).all()
            return [_ticket_detail(ticket) for ticket in tickets]

    # Customers

    def create_customer(self, name: str, email: Optional[str] = None,
                        phone: Optional[str] = None, address: Optional[str] = None,
                        created_by: str = 'system') -> Dict[str, Any]:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("customer name must be a non-empty string")
        with self.get_session() as session:
            customer = Customer(name=name.strip(), email=email, phone=phone, address=address)
            session.add(customer)
            session.flush()
            self.log_activity(session, 'CREATE', 'CUSTOMER', customer.id, customer.name,
                              None, created_by)
            return _customer_dict(customer)

    def get_customer(self, customer_id) -> Dict[str, Any]:
        customer_id = _as_uuid(customer_id, CustomerNotFound, 'customer')
        with self.get_session() as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise CustomerNotFound(f"customer {customer_id} not found")
            result = _customer_dict(customer)
            result["bookings"] = [_booking_dict(booking) for booking in customer.bookings]
            return result

    def list_customers(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        with self.get_session() as session:
            query = session.query(Customer)
            if search:
                pattern = f"%{search}%"
                query = query.filter(
                    Customer.name.ilike(pattern)
                    | Customer.email.ilike(pattern)
                    | Customer.phone.ilike(pattern)
                )
            return [_customer_dict(customer) for customer in query.order_by(Customer.name).all()]

    def update_customer(self, customer_id, updated_by: str = 'system',
                        **fields) -> Dict[str, Any]:
        allowed = {'name', 'email', 'phone', 'address'}
        unexpected = set(fields) - allowed
        if unexpected:
            raise ValueError(f"unknown customer field(s): {', '.join(sorted(unexpected))}")
        if 'name' in fields and (not isinstance(fields['name'], str) or not fields['name'].strip()):
            raise ValueError("customer name must be a non-empty string")

        customer_id = _as_uuid(customer_id, CustomerNotFound, 'customer')
        with self.get_session() as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise CustomerNotFound(f"customer {customer_id} not found")
            for name, value in fields.items():
                setattr(customer, name, value)
            self.log_activity(session, 'UPDATE', 'CUSTOMER', customer.id, customer.name,
                              {"fields": sorted(fields)}, updated_by)
            session.flush()
            return _customer_dict(customer)

    def delete_customer(self, customer_id, deleted_by: str = 'system') -> bool:
        """Delete a customer; their bookings stay, detached from the customer."""
        customer_id = _as_uuid(customer_id, CustomerNotFound, 'customer')
        with self.get_session() as session:
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise CustomerNotFound(f"customer {customer_id} not found")
            session.query(Booking).filter(Booking.customer_id == customer_id).update(
                {Booking.customer_id: None}, synchronize_session=False
            )
            self.log_activity(session, 'DELETE', 'CUSTOMER', customer.id, customer.name,
                              None, deleted_by)
            session.delete(customer)
            return True

    # Reporting

    def list_activity(self, limit: int = 100, entity_type: Optional[str] = None) -> List[Dict]:
        with self.get_session() as session:
            query = session.query(ActivityLog)
            if entity_type:
                query = query.filter(ActivityLog.entity_type == entity_type.upper())
            entries = query.order_by(ActivityLog.performed_at.desc()).limit(limit).all()
            return [{
                "id": str(entry.id),
                "action": entry.action,
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "entity_name": entry.entity_name,
                "details": entry.details,
                "performed_by": entry.performed_by,
                "performed_at": _iso(entry.performed_at),
            } for entry in entries]

    def get_seat_status(self, show_id) -> Dict[str, Any]:
        """Return booking aggregates and per-seat details for the given show."""
        show_id = _as_uuid(show_id, ShowNotFound, 'show')
        with self.get_session() as session:
            show = session.get(Show, show_id)
            if show is None:
                raise ShowNotFound(f"show {show_id} not found")

            booked = set(session.scalars(
                select(BookingSeat.seat_code).where(
                    BookingSeat.show_id == show_id,
                    BookingSeat.status == BookingStatus.CONFIRMED,
                )
            ).all())

            seats_detail = []
            if show.layout is not None:
                for seat in seat_layout.generate_seats(show.layout.structure):
                    seats_detail.append({
                        "seat_code": seat.code,
                        "section": seat.section,
                        "row": seat.row,
                        "number": seat.number,
                        "status": "booked" if seat.code in booked else "available",
                    })
                total = len(seats_detail)
            else:
                seats_detail = [{"seat_code": code, "status": "booked"} for code in sorted(booked)]
                total = len(booked)

            return {
                "show_id": str(show.id),
                "show_status": show.status.value,
                "total_seats": total,
                "booked_seats": len(booked),
                "available_seats": max(total - len(booked), 0),
                "seats": seats_detail,
            }

    def get_show_report(self, show_id) -> Dict[str, Any]:
        """Occupancy and revenue for one show; reads only."""
        show_id = _as_uuid(show_id, ShowNotFound, 'show')
        with self.get_session() as session:
            show = session.get(Show, show_id)
            if show is None:
                raise ShowNotFound(f"show {show_id} not found")

            capacity = seat_layout.total_seats(show.layout.structure) if show.layout else None
            booked = self._confirmed_seat_count(session, show.id)

            ticket_counts = {status.value: 0 for status in TicketStatus}
            for status, count in session.query(Ticket.status, func.count(Ticket.id)).filter(
                    Ticket.show_id == show.id).group_by(Ticket.status).all():
                ticket_counts[status.value] = count

            revenue = session.scalar(
                select(func.coalesce(func.sum(Ticket.price), 0)).where(
                    Ticket.show_id == show.id,
                    Ticket.status.in_([TicketStatus.ACTIVE, TicketStatus.COMPLETED]),
                )
            )
            bookings = session.scalar(
                select(func.count(Booking.id)).where(
                    Booking.show_id == show.id,
                    Booking.status == BookingStatus.CONFIRMED,
                )
            )

            return {
                "show": _show_dict(show),
                "capacity": capacity,
                "booked_seats": booked,
                "occupancy_percent": round(100.0 * booked / capacity, 1) if capacity else None,
                "confirmed_bookings": bookings,
                "tickets": ticket_counts,
                "revenue": _money(revenue),
            }

    def health_check(self) -> Dict:
        """Report database connectivity and show count; used by the /health endpoint."""
        try:
            with self.get_session() as session:
                # Test database connection
                session.execute(text("SELECT 1"))

                # Count shows
                show_count = session.query(Show).count()

                return {
                    "status": "healthy",
                    "database": "connected",
                    "shows": show_count
                }
        except SQLAlchemyError as e:
            logger.error(f"Health check failed: {e}")
            return {
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e)
            }
