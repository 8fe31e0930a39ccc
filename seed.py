"""
Seed script -- populates the document store with sample data for reviewers.

Run after migrations:
    python seed.py

Creates (all in Casablanca):
  - 4 sample passengers
  - 4 sample drivers: 3 verified and online, 1 application pending review
  - 4 sample rides (SEARCHING, ACCEPTED, COMPLETED + rated, CANCELLED)
"""

import asyncio
import sys

from ladies_drive.config import settings
from ladies_drive.domain.entities import (
    REQUIRED_DRIVER_DOCUMENTS,
    Location,
    Place,
    RideOptions,
    VehicleInfo,
)
from ladies_drive.domain.enums import Availability, RideStatus, ServiceClass, UserRole
from ladies_drive.infrastructure.factory import build_store
from ladies_drive.infrastructure.repositories import UserRepository
from ladies_drive.services.lifecycle import RideLifecycleManager
from ladies_drive.services.rating import RatingAggregator
from ladies_drive.services.users import UserService

CITY = "Casablanca"

PASSENGERS = [
    {"name": "Salma Bennani", "email": "salma@example.com"},
    {"name": "Imane Alaoui", "email": "imane@example.com"},
    {"name": "Yasmine Tazi", "email": "yasmine@example.com"},
    {"name": "Nadia Chraibi", "email": "nadia@example.com"},
]

DRIVERS = [
    {
        "name": "Khadija El Fassi",
        "phone": "+212600000001",
        "vehicle": VehicleInfo("Dacia", "Logan", "2021", "White", "12345-A-6"),
        "online": True,
        "location": (33.5731, -7.5898),
    },
    {
        "name": "Fatima Zahra Idrissi",
        "phone": "+212600000002",
        "vehicle": VehicleInfo("Renault", "Clio", "2022", "Grey", "23456-B-6"),
        "online": True,
        "location": (33.5890, -7.6030),
    },
    {
        "name": "Meryem Berrada",
        "phone": "+212600000003",
        "vehicle": VehicleInfo("Toyota", "Corolla", "2020", "Black", "34567-D-6"),
        "online": True,
        "location": (33.5950, -7.6180),
    },
    {
        "name": "Hajar Lahlou",
        "phone": "+212600000004",
        "vehicle": VehicleInfo("Peugeot", "208", "2023", "Red", "45678-H-6"),
        "online": False,
        "location": (33.5600, -7.6300),
    },
]

PLACES = {
    "Maarif": Place("Maarif", Location(33.5808, -7.6326)),
    "Ain Diab": Place("Ain Diab", Location(33.5920, -7.6700)),
    "Hassan II Mosque": Place("Hassan II Mosque", Location(33.6084, -7.6325)),
    "Casa Port": Place("Casa Port", Location(33.6000, -7.6110)),
    "Anfa Place": Place("Anfa Place", Location(33.5975, -7.6590)),
    "Twin Center": Place("Twin Center", Location(33.5856, -7.6328)),
}


async def seed():
    store = build_store(settings)
    users = UserService(store)
    lifecycle = RideLifecycleManager(store, default_city=CITY)
    ratings = RatingAggregator(store)

    # Check if already seeded
    if await UserRepository(store).list(city=CITY):
        print("Store already seeded. Skipping.")
        return

    # ── Users ─────────────────────────────────────────────────────────
    passengers = []
    for p in PASSENGERS:
        passengers.append(
            await users.register(name=p["name"], email=p["email"], city=CITY)
        )
    print(f"  Created {len(passengers)} passengers")

    drivers = []
    for d in DRIVERS:
        driver = await users.register(
            name=d["name"],
            role=UserRole.DRIVER,
            city=CITY,
            phone_number=d["phone"],
            vehicle=d["vehicle"],
        )
        await users.update_location(driver.id, *d["location"])
        documents = {
            key: f"https://files.example.com/{driver.id}/{key}.jpg"
            for key in REQUIRED_DRIVER_DOCUMENTS
        }
        await users.submit_application(driver.id, documents)
        if d["online"]:
            await users.approve_driver(driver.id)
            await users.set_availability(driver.id, Availability.AVAILABLE)
        drivers.append(driver)
    print(f"  Created {len(drivers)} drivers")

    # ── Rides ─────────────────────────────────────────────────────────
    # SEARCHING: open request every online driver can see
    await lifecycle.request_ride(
        passengers[0], PLACES["Maarif"], PLACES["Ain Diab"],
        ServiceClass.REGULAR, 18.50,
    )

    # ACCEPTED: driver on the way
    ride = await lifecycle.request_ride(
        passengers[1], PLACES["Casa Port"], PLACES["Anfa Place"],
        ServiceClass.FAMILY, 32.00, RideOptions(luggage=True),
    )
    await lifecycle.accept(ride.id, drivers[0].id)

    # COMPLETED: full trip, both sides rated
    ride = await lifecycle.request_ride(
        passengers[2], PLACES["Twin Center"], PLACES["Hassan II Mosque"],
        ServiceClass.VIP, 45.00, RideOptions(quiet=True),
    )
    await lifecycle.accept(ride.id, drivers[1].id)
    await lifecycle.advance(ride.id, RideStatus.ARRIVED)
    await lifecycle.advance(ride.id, RideStatus.IN_PROGRESS)
    await lifecycle.complete(ride.id, passengers[2].id, drivers[1].id)
    await ratings.rate_counterparty(ride.id, passengers[2].id, 5)
    await ratings.rate_counterparty(ride.id, drivers[1].id, 4)

    # CANCELLED by the passenger before anyone accepted
    ride = await lifecycle.request_ride(
        passengers[3], PLACES["Anfa Place"], PLACES["Maarif"],
        ServiceClass.INSTANT, 22.00,
    )
    await lifecycle.cancel(ride.id, "Plans changed")
    print("  Created 4 rides")

    print("Seeding complete!")


if __name__ == "__main__":
    try:
        asyncio.run(seed())
    except Exception as e:
        print(f"Seed error: {e}", file=sys.stderr)
        sys.exit(1)
