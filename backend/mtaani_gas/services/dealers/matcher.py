"""Ward-based dealer matching.

Matching is a string heuristic, not geocoding: an exact ward match scores
highest, a ward contained in the other side's location text scores lower,
anything else scores zero and is never offered. Wards whose names contain
one another (e.g. "Kasarani" and "Kasarani North") match each other.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from mtaani_gas.services.dealers.location import Location

EXACT_MATCH_SCORE = 100
PARTIAL_MATCH_SCORE = 80
NO_MATCH_SCORE = 0


@dataclass(frozen=True)
class DealerProfile:
    """The parts of a dealer account the matcher needs."""

    id: uuid.UUID
    name: str
    location: Location


@dataclass(frozen=True)
class DealerMatch:
    dealer_id: uuid.UUID
    name: str
    score: int


def _as_location(value: Union[Location, str, None]) -> Location:
    if isinstance(value, Location):
        return value
    return Location.parse(value)


def score_ward_match(
    order_location: Union[Location, str, None],
    dealer_location: Union[Location, str, None],
) -> int:
    """
    Score how well a dealer's location covers an order's delivery location.

    Args:
        order_location: Delivery location of the order
        dealer_location: Service location of the dealer

    Returns:
        EXACT_MATCH_SCORE, PARTIAL_MATCH_SCORE or NO_MATCH_SCORE
    """
    order = _as_location(order_location)
    dealer = _as_location(dealer_location)

    if order.is_empty or dealer.is_empty:
        return NO_MATCH_SCORE

    if order.key == dealer.key:
        return EXACT_MATCH_SCORE

    if order.key in dealer.search_text or dealer.key in order.search_text:
        return PARTIAL_MATCH_SCORE

    return NO_MATCH_SCORE


def match_dealers(
    delivery_location: Union[Location, str, None],
    dealers: Iterable[DealerProfile],
    limit: Optional[int] = None,
) -> list[DealerMatch]:
    """
    Select the dealers eligible for an order.

    Args:
        delivery_location: Delivery location of the order
        dealers: Candidate dealer profiles
        limit: Optional cap on the number of matches returned

    Returns:
        Matches with a nonzero score, best first
    """
    order = _as_location(delivery_location)
    matches = []
    for dealer in dealers:
        score = score_ward_match(order, dealer.location)
        if score > NO_MATCH_SCORE:
            matches.append(DealerMatch(dealer_id=dealer.id, name=dealer.name, score=score))

    matches.sort(key=lambda m: (-m.score, m.name.lower()))
    return matches[:limit] if limit is not None else matches
