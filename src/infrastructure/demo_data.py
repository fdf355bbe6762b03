"""Sample riders and drivers used by ``seed.py`` and the in-memory backend."""

from __future__ import annotations

from .memory import InMemoryAccounts

RIDERS = [
    {"name": "John Doe", "email": "john@example.com", "rating": 4.9, "points": 2450},
    {"name": "Sarah M.", "email": "sarah@example.com", "rating": 4.85, "points": 3105},
    {"name": "Robert J.", "email": "robert@example.com", "rating": 4.6, "points": 2980},
    {"name": "Amy L.", "email": "amy@example.com", "rating": 4.4, "points": 1200},
]

DRIVERS = [
    {
        "name": "Michael T.",
        "email": "michael@example.com",
        "rating": 4.9,
        "points": 3240,
        "vehicle": "Toyota Camry",
        "license_plate": "ABC-1234",
    },
    {
        "name": "Priya K.",
        "email": "priya@example.com",
        "rating": 4.7,
        "points": 1800,
        "vehicle": "Honda City",
        "license_plate": "MH-02-7781",
    },
]


def populate_memory(accounts: InMemoryAccounts) -> None:
    for rider in RIDERS:
        accounts.add_user(rider["name"], rating=rider["rating"], points=rider["points"])
    for driver in DRIVERS:
        user = accounts.add_user(
            driver["name"], rating=driver["rating"], points=driver["points"]
        )
        accounts.add_driver(user.id, driver["vehicle"], driver["license_plate"])
