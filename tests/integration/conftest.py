"""Fixtures backed by a real PostgreSQL container."""

import asyncpg
import pytest
import pytest_asyncio

from durable_jobs.config import DurableJobsConfig
from durable_jobs.ddl import jobs_table_ddl

TABLE = "integration_jobs"


@pytest.fixture(scope="module")
def postgres_dsn():
    """Provide a PostgreSQL test container, or skip when Docker is unavailable."""
    postgres_module = pytest.importorskip("testcontainers.postgres")

    try:
        postgres = postgres_module.PostgresContainer("postgres:15")
        postgres.start()
    except Exception as e:
        pytest.skip(f"PostgreSQL container unavailable: {e}")

    try:
        # asyncpg speaks plain postgresql:// URLs
        yield postgres.get_connection_url().replace("+psycopg2", "")
    finally:
        postgres.stop()


@pytest.fixture
def pg_config(postgres_dsn):
    return DurableJobsConfig(db_dsn=postgres_dsn, table_name=TABLE)


@pytest_asyncio.fixture
async def db_pool(postgres_dsn):
    """Create a database pool and a fresh jobs table."""
    pool = await asyncpg.create_pool(postgres_dsn, min_size=2, max_size=10)

    async with pool.acquire() as conn:
        await conn.execute(f'DROP TABLE IF EXISTS "{TABLE}"')
        await conn.execute(jobs_table_ddl(TABLE))

    yield pool

    await pool.close()
