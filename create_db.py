import asyncio
import sys
from pathlib import Path

import asyncpg
from src.config import settings


MIGRATION_PATH = Path(__file__).parent / "migrations" / "init.sql"


async def ensure_database() -> None:
    """Создаёт рабочую БД, если её ещё нет."""
    db_name = settings.database.DB_NAME

    # Подключаемся к служебной БД postgres, чтобы создать рабочую
    sys_conn = await asyncpg.connect(
        user=settings.database.DB_USER,
        password=settings.database.DB_PASSWORD,
        host=settings.database.DB_HOST,
        port=settings.database.DB_PORT,
        database="postgres",
    )
    try:
        exists = await sys_conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
        if not exists:
            print(f"Creating database {db_name}...")
            await sys_conn.execute(f'CREATE DATABASE "{db_name}"')
            print("Database created.")
        else:
            print(f"Database {db_name} already exists.")
    finally:
        await sys_conn.close()


async def apply_schema(seed: list[str]) -> None:
    """Применяет migrations/init.sql и при необходимости заполняет справочник автобусов."""
    conn = await asyncpg.connect(dsn=settings.database.dsn)
    try:
        await conn.execute(MIGRATION_PATH.read_text(encoding="utf-8"))
        print(f"Schema applied from {MIGRATION_PATH.name}.")

        if seed:
            table = settings.database.BUS_SERVICES_TABLE
            count = await conn.fetchval(f"SELECT COUNT(*) FROM {table}")
            if count:
                print(f"{table} already has {count} rows, seed skipped.")
            else:
                await conn.executemany(
                    f"INSERT INTO {table} (vehicle_type) VALUES ($1)",
                    [(label,) for label in seed],
                )
                print(f"Seeded {len(seed)} buses into {table}.")
    finally:
        await conn.close()


async def create_db(seed: list[str]) -> None:
    try:
        await ensure_database()
        await apply_schema(seed)
    except (asyncpg.PostgresError, OSError) as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    # python create_db.py "Bus 1" "Bus 2" ... - заполнить пустой справочник
    asyncio.run(create_db(sys.argv[1:]))
