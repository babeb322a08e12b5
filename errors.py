"""Exception types raised by the box office core.

Seat conflicts are deliberately absent: they are an expected outcome of a
booking attempt and come back as data on ``BookingResult``.
"""

from typing import Iterable, List


class BoxOfficeError(Exception):
    """Base class for every error the core raises on purpose."""


class ShowNotFound(BoxOfficeError):
    """The show does not exist or no longer admits bookings."""


class LayoutNotFound(BoxOfficeError):
    pass


class CustomerNotFound(BoxOfficeError):
    pass


class BookingNotFound(BoxOfficeError):
    pass


class BookingAlreadyCancelled(BoxOfficeError):
    pass


class UnknownSeatCodes(BoxOfficeError):
    """Requested seat codes that the show's layout does not contain."""

    def __init__(self, codes: Iterable[str]):
        self.codes: List[str] = list(codes)
        super().__init__(f"unknown seat code(s): {', '.join(self.codes)}")


class BookingTimeout(BoxOfficeError):
    """Gave up waiting for another booking on the same show or date."""


class PersistenceFailure(BoxOfficeError):
    """The storage layer failed; the transaction was rolled back."""


class TicketNotFound(BoxOfficeError):
    pass


class BookingNotCancellable(BoxOfficeError):
    """The booking's show has finished; its tickets are already completed."""


class IdempotencyKeyReused(BoxOfficeError):
    """A request id was sent again for a different show or seat selection."""
