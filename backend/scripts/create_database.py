"""Create the PostgreSQL database if it doesn't exist."""

import asyncio
import os
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncpg
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DATABASE_HOST = os.getenv("DATABASE_HOST", "localhost")
DATABASE_PORT = int(os.getenv("DATABASE_PORT", "5432"))
DATABASE_USER = os.getenv("DATABASE_USER", "postgres")
DATABASE_PASSWORD = os.getenv("DATABASE_PASSWORD", "")
DATABASE_NAME = os.getenv("DATABASE_NAME", "vidproxy")


async def create_database() -> int:
    """Create the database if it doesn't exist."""
    print(f"Database: {DATABASE_NAME} on {DATABASE_HOST}:{DATABASE_PORT} as {DATABASE_USER}")

    try:
        conn = await asyncpg.connect(
            host=DATABASE_HOST,
            port=DATABASE_PORT,
            user=DATABASE_USER,
            password=DATABASE_PASSWORD,
            database="postgres",
        )
        try:
            exists = await conn.fetchval(
                "SELECT 1 FROM pg_database WHERE datname = $1", DATABASE_NAME
            )
            if exists:
                print(f"Database '{DATABASE_NAME}' already exists.")
            else:
                await conn.execute(f'CREATE DATABASE "{DATABASE_NAME}"')
                print(f"Database '{DATABASE_NAME}' created.")
        finally:
            await conn.close()
    except asyncpg.exceptions.InvalidPasswordError:
        print("Error: invalid database password, check DATABASE_PASSWORD in .env")
        return 1
    except (OSError, asyncpg.exceptions.PostgresError) as e:
        print(f"Error: {e}")
        return 1

    print("Next: run `alembic upgrade head` from the backend directory.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(create_database()))
