#!/usr/bin/env python3
"""
Seed script to create a demo restaurant with tables and reservation settings
"""

import asyncio


async def seed_demo_data():
    """Seed demo data for development"""
    from sqlalchemy import select

    from tablehold.database import SessionLocal, engine, Base
    from tablehold.models import Restaurant, Table, ReservationSettings

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        # Check if demo restaurant already exists
        result = await db.execute(
            select(Restaurant).where(Restaurant.name == "Mario's Italian Kitchen")
        )
        existing = result.scalar_one_or_none()

        if existing:
            print("Demo data already exists. Skipping...")
            return

        print("Creating demo restaurant...")

        restaurant = Restaurant(
            name="Mario's Italian Kitchen",
            timezone="America/New_York",
        )
        db.add(restaurant)
        await db.flush()

        print(f"Created restaurant: {restaurant.name} (ID: {restaurant.id})")

        # Global fallback plus a restaurant-specific policy
        db.add(ReservationSettings(
            restaurant_id=None,
            cancellation_window_hours=12,
            reservation_duration_minutes=90,
        ))
        db.add(ReservationSettings(
            restaurant_id=restaurant.id,
            cancellation_window_hours=24,
            reservation_duration_minutes=120,
        ))

        tables_data = [
            ("T1", 2),
            ("T2", 2),
            ("T3", 4),
            ("T4", 4),
            ("T5", 6),
            ("T6", 8),
        ]
        for table_number, capacity in tables_data:
            db.add(Table(
                restaurant_id=restaurant.id,
                table_number=table_number,
                capacity=capacity,
            ))

        await db.commit()

        print(f"""
Demo data created successfully!

Restaurant: {restaurant.name}
  ID: {restaurant.id}
  Timezone: {restaurant.timezone}

Tables: {len(tables_data)} created
Reservation settings: 24h cancellation window, 120 minute slots
""")


if __name__ == "__main__":
    asyncio.run(seed_demo_data())
