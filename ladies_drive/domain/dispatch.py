"""
Dispatch eligibility
====================

Pure functions deciding which open requests a driver may see and accept.

Eligibility of request *r* for driver *d*::

    r.status == SEARCHING
    and r.city == d.city
    and (r.target_driver_id is None or r.target_driver_id == d.id)
    and r.id not in exclude_ids

``exclude_ids`` is the driver's per-session skip set.  It is always passed
in by the caller; nothing here remembers it between calls.

Candidates are not ranked: they are listed oldest first, and the passenger
picks a driver by hand from ``available_drivers``.

Complexity: O(n) over the rides / users handed in.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import AbstractSet, Optional

from .entities import RideRequest, User
from .enums import Availability, RideStatus, UserRole


@dataclass(frozen=True)
class DispatchView:
    """What one driver should be looking at right now."""

    driver_id: str
    active_ride: Optional[RideRequest] = None
    candidates: tuple[RideRequest, ...] = field(default_factory=tuple)

    @property
    def current(self) -> Optional[RideRequest]:
        """The ride to put in front of the driver: the assigned one first."""
        if self.active_ride is not None:
            return self.active_ride
        return self.candidates[0] if self.candidates else None

    @property
    def candidate_ids(self) -> list[str]:
        return [r.id for r in self.candidates]


def is_eligible(
    ride: RideRequest,
    driver: User,
    exclude_ids: AbstractSet[str] = frozenset(),
) -> bool:
    return (
        ride.status == RideStatus.SEARCHING
        and ride.city == driver.city
        and (ride.target_driver_id is None or ride.target_driver_id == driver.id)
        and ride.id not in exclude_ids
    )


def can_receive_requests(driver: User) -> bool:
    """A driver gets new requests only when verified and not offline."""
    return driver.is_verified and driver.availability != Availability.OFFLINE


def visible_requests(
    rides: Iterable[RideRequest],
    driver: User,
    exclude_ids: AbstractSet[str] = frozenset(),
) -> list[RideRequest]:
    """Eligible requests for *driver*, oldest first."""
    eligible = [r for r in rides if is_eligible(r, driver, exclude_ids)]
    return sorted(eligible, key=_created_key)


def active_ride_for(
    rides: Iterable[RideRequest], driver_id: str
) -> Optional[RideRequest]:
    """The non-terminal ride *driver_id* is assigned to, if any."""
    assigned = [
        r
        for r in rides
        if r.is_assigned and r.driver is not None and r.driver.id == driver_id
    ]
    if not assigned:
        return None
    return sorted(assigned, key=_created_key)[0]


def build_dispatch_view(
    rides: Iterable[RideRequest],
    driver: User,
    exclude_ids: AbstractSet[str] = frozenset(),
) -> DispatchView:
    """
    Combine recovery and discovery into one view.

    An assigned, non-terminal ride always wins: the driver sees it and no
    new candidates.  An offline or unverified driver gets no candidates
    either.
    """
    rides = list(rides)
    active = active_ride_for(rides, driver.id)
    if active is not None or not can_receive_requests(driver):
        return DispatchView(driver_id=driver.id, active_ride=active)
    return DispatchView(
        driver_id=driver.id,
        candidates=tuple(visible_requests(rides, driver, exclude_ids)),
    )


def available_drivers(users: Iterable[User], city: str) -> list[User]:
    """Drivers a passenger in *city* may choose from.  No ordering by distance."""
    return [
        u
        for u in users
        if u.role == UserRole.DRIVER
        and u.city == city
        and u.availability == Availability.AVAILABLE
        and u.is_verified
    ]


def _created_key(ride: RideRequest):
    # rides without a timestamp sort first, then by id for a stable order
    return (ride.created_at is not None, ride.created_at or 0, ride.id or "")
