"""Seat code derivation from a layout's section/row structure.

A layout structure looks like::

    {"sections": [
        {"name": "North", "price": 100, "rows": [{"seats": 16}, {"seats": 14}]},
        {"name": "East", "price": 150, "rows": 3, "seatsPerRow": 8},
    ]}

Rows are either a list with an explicit seat count per row or an integer
paired with ``seatsPerRow``. Seat codes are the upper-cased first letter of the
section name, the row letter (A for the first row) and the seat number, so the
first seat of North's first row is ``NA1``.
"""

from collections import Counter, namedtuple
from string import ascii_uppercase
from typing import Any, Dict, List

SeatSpec = namedtuple('SeatSpec', ['code', 'section', 'row', 'number', 'price'])


def _row_sizes(section: Dict[str, Any]) -> List[int]:
    rows = section.get('rows') or 0
    if isinstance(rows, list):
        return [int(row.get('seats', 0)) for row in rows]
    return [int(section.get('seatsPerRow') or 0)] * int(rows)


def generate_seats(structure: Dict[str, Any]) -> List[SeatSpec]:
    """Expand a layout structure into its seats, section by section, row by row."""
    seats = []
    for section in structure.get('sections') or []:
        prefix = section['name'][0].upper()
        for row_index, seat_count in enumerate(_row_sizes(section)):
            row_letter = ascii_uppercase[row_index]
            for number in range(1, seat_count + 1):
                seats.append(SeatSpec(
                    code=f"{prefix}{row_letter}{number}",
                    section=section['name'],
                    row=row_letter,
                    number=number,
                    price=section.get('price'),
                ))
    return seats


def seat_codes(structure: Dict[str, Any]) -> List[str]:
    return [seat.code for seat in generate_seats(structure)]


def total_seats(structure: Dict[str, Any]) -> int:
    return sum(sum(_row_sizes(section)) for section in structure.get('sections') or [])


def validate_structure(structure: Any) -> None:
    """Reject structures that are malformed or would produce duplicate seat codes."""
    if not isinstance(structure, dict) or not isinstance(structure.get('sections'), list):
        raise ValueError("layout structure must be an object with a 'sections' array")
    if not structure['sections']:
        raise ValueError("layout must define at least one section")

    for index, section in enumerate(structure['sections']):
        if not isinstance(section, dict):
            raise ValueError(f"section {index} must be an object")
        name = section.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"section {index} must have a non-empty name")
        rows = section.get('rows')
        if isinstance(rows, list):
            for row in rows:
                if not isinstance(row, dict) or not _is_count(row.get('seats')):
                    raise ValueError(f"section {name!r} rows need a non-negative 'seats' count")
        elif _is_count(rows):
            if not _is_count(section.get('seatsPerRow')):
                raise ValueError(f"section {name!r} needs a non-negative 'seatsPerRow'")
        else:
            raise ValueError(f"section {name!r} rows must be a list or a count")
        if len(_row_sizes(section)) > len(ascii_uppercase):
            raise ValueError(f"section {name!r} has more than {len(ascii_uppercase)} rows")

    counts = Counter(seat_codes(structure))
    duplicates = sorted(code for code, count in counts.items() if count > 1)
    if duplicates:
        raise ValueError(f"layout produces duplicate seat codes: {', '.join(duplicates[:10])}")


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0
