#!/usr/bin/env python3
"""Setup script for the venue reservation API."""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from venue_reservations.core.clock import system_clock
from venue_reservations.core.config import settings
from venue_reservations.core.database import async_session_factory, close_db, init_db
from venue_reservations.models import MaintenanceWindow, Resource, ResourceKind

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


SAMPLE_CATALOG = [
    # kind, name, room type, min guests, max guests, member price, guest price
    (ResourceKind.ROOM, "Deluxe Room 101", "Deluxe", 1, 2, 8000, 12000),
    (ResourceKind.ROOM, "Deluxe Room 102", "Deluxe", 1, 2, 8000, 12000),
    (ResourceKind.ROOM, "Deluxe Room 103", "Deluxe", 1, 2, 8000, 12000),
    (ResourceKind.ROOM, "Family Suite 201", "Family Suite", 1, 4, 14000, 19000),
    (ResourceKind.HALL, "Grand Banquet Hall", None, 50, 500, 150000, 200000),
    (ResourceKind.LAWN, "Garden Lawn", None, 50, 200, 100000, 140000),
    (ResourceKind.PHOTOSHOOT, "Photoshoot Studio", None, 0, 10, 15000, 20000),
]


def run_migrations():
    """Apply Alembic migrations up to head."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations...")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def setup_database():
    """Setup the database with initial schema."""
    logger.info("Setting up database...")

    if settings.database_url.startswith("sqlite"):
        # The migrations target PostgreSQL; SQLite gets the schema straight from the models
        await init_db()
    else:
        await asyncio.to_thread(run_migrations)

    logger.info("Database setup completed successfully!")


async def create_sample_data():
    """Create a small catalog with one scheduled maintenance window."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        existing = await db.execute(select(func.count(Resource.id)))
        if existing.scalar_one() > 0:
            logger.info("Sample data already exists, skipping...")
            return

        resources = {}
        for kind, name, room_type, min_guests, max_guests, member_price, guest_price in SAMPLE_CATALOG:
            resource = Resource(
                kind=kind.value,
                name=name,
                room_type=room_type,
                min_guests=min_guests,
                max_guests=max_guests,
                member_price=member_price,
                guest_price=guest_price,
                currency="PKR",
            )
            db.add(resource)
            resources[name] = resource
        await db.flush()

        today = system_clock.today()
        db.add(MaintenanceWindow(
            resource_id=resources["Garden Lawn"].id,
            start_date=today + timedelta(days=14),
            end_date=today + timedelta(days=20),
            reason="Re-turfing",
        ))

        await db.commit()
        logger.info("Sample data created", extra={"resources": len(resources)})


async def main():
    """Main setup function."""
    logger.info("Starting venue reservation API setup...")

    try:
        await setup_database()
        await create_sample_data()
    finally:
        await close_db()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn venue_reservations.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
