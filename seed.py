"""
Seed script -- populates the SQL database with sample riders and drivers.

Run after migrations (or against an empty database; tables are created if
missing):
    STORAGE_BACKEND=sql python seed.py

Creates:
  - 4 sample riders (mix of priority and regular ratings)
  - 2 sample drivers, both online

Rides are not seeded: request them through the API so they enter the
pending queue.
"""

import asyncio
import sys

from sqlalchemy import func, select

from src.config import settings
from src.infrastructure.database import Base, create_engine, create_session_factory
from src.infrastructure.demo_data import DRIVERS, RIDERS
from src.infrastructure.models import DriverModel, UserModel


def _level(points: int) -> int:
    return points // settings.points_per_level + 1


async def seed() -> None:
    engine = create_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = create_session_factory(engine)
    async with factory() as session:
        existing = await session.scalar(select(func.count()).select_from(UserModel))
        if existing:
            print(f"Database already has {existing} users -- skipping seed.")
            await engine.dispose()
            return

        for rider in RIDERS:
            session.add(
                UserModel(
                    name=rider["name"],
                    email=rider["email"],
                    rating=rider["rating"],
                    points=rider["points"],
                    level=_level(rider["points"]),
                )
            )

        for driver in DRIVERS:
            user = UserModel(
                name=driver["name"],
                email=driver["email"],
                rating=driver["rating"],
                points=driver["points"],
                level=_level(driver["points"]),
            )
            session.add(user)
            await session.flush()
            session.add(
                DriverModel(
                    user_id=user.id,
                    vehicle=driver["vehicle"],
                    license_plate=driver["license_plate"],
                    is_active=True,
                )
            )

        await session.commit()

    await engine.dispose()
    print(f"Seeded {len(RIDERS)} riders and {len(DRIVERS)} drivers.")


if __name__ == "__main__":
    try:
        asyncio.run(seed())
    except KeyboardInterrupt:
        sys.exit(1)
