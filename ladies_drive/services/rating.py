"""
Rating Aggregator: folds 1-5 ratings into a user's running average.

``rate_counterparty`` also records who rated whom for which ride in the
``ratings`` collection, keyed ``<ride_id>:<rater_id>``.  The record and the
folded average are written in one transaction, so each party rates the
other at most once per ride.  The ride document itself is never touched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from ladies_drive.domain.entities import User
from ladies_drive.domain.enums import RideStatus
from ladies_drive.domain.errors import AlreadyRated, InvalidTransition, NotEligible
from ladies_drive.domain.rating import fold_rating, validate_rating
from ladies_drive.infrastructure.repositories import (
    RideRepository,
    UserRepository,
    rating_ref,
    user_ref,
)
from ladies_drive.infrastructure.store import DocumentStore, Transaction

from .lifecycle import utcnow

logger = logging.getLogger(__name__)


class RatingAggregator:
    def __init__(
        self, store: DocumentStore, clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.rides = RideRepository(store)
        self.users = UserRepository(store)
        self.clock = clock

    async def rate_user(self, user_id: str, value: Optional[int]) -> Optional[User]:
        """Fold *value* into *user_id*'s rating.  ``None`` means skipped."""
        if value is None:
            logger.debug("Rating for %s skipped", user_id)
            return None
        value = validate_rating(value)

        async def mutation(tx: Transaction) -> User:
            return await self._fold(tx, user_id, value)

        user = await self.store.transact([user_ref(user_id)], mutation)
        self._log(user, value)
        return user

    async def rate_counterparty(
        self, ride_id: str, rater_id: str, value: Optional[int]
    ) -> Optional[User]:
        """Let one party of a completed ride rate the other, once."""
        if value is None:
            return None
        value = validate_rating(value)

        ride = await self.rides.require(ride_id)
        if ride.status != RideStatus.COMPLETED:
            raise InvalidTransition(
                f"Ride {ride_id} is {ride.status.value}; only completed rides can be rated"
            )
        if ride.passenger is not None and rater_id == ride.passenger.id and ride.driver:
            target = ride.driver.id
        elif ride.driver is not None and rater_id == ride.driver.id and ride.passenger:
            target = ride.passenger.id
        else:
            raise NotEligible(f"User {rater_id} did not take part in ride {ride_id}")

        record = rating_ref(ride_id, rater_id)

        async def mutation(tx: Transaction) -> User:
            if await tx.get(record) is not None:
                raise AlreadyRated(f"User {rater_id} already rated ride {ride_id}")
            user = await self._fold(tx, target, value)
            tx.set(
                record,
                {
                    "rideId": ride_id,
                    "raterId": rater_id,
                    "ratedUserId": target,
                    "rating": value,
                    "createdAt": self.clock().isoformat(),
                },
            )
            return user

        user = await self.store.transact([record, user_ref(target)], mutation)
        self._log(user, value)
        return user

    async def _fold(self, tx: Transaction, user_id: str, value: int) -> User:
        user = await self.users.read(tx, user_id)
        user.rating, user.rating_count = fold_rating(
            user.rating, user.rating_count, value
        )
        self.users.stage(tx, user, "rating", "rating_count")
        return user

    @staticmethod
    def _log(user: User, value: int) -> None:
        logger.info(
            "User %s rated %d -> %.2f over %d rating(s)",
            user.id,
            value,
            user.rating,
            user.rating_count,
        )
