from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from .settings import DATABASE_URL, DB_ECHO

# Each service keeps its tables in its own schema to simulate microservice isolation
SERVICE_SCHEMAS = ("inventory_schema", "order_schema")

IS_SQLITE = DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    # SQLite has no schemas: render every table unqualified
    engine = create_async_engine(
        DATABASE_URL,
        echo=DB_ECHO,
        poolclass=NullPool,
        execution_options={"schema_translate_map": {name: None for name in SERVICE_SCHEMAS}},
    )
else:
    engine = create_async_engine(DATABASE_URL, echo=DB_ECHO)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def create_schema(*schemas: str):
    """Creates the given schemas (Postgres only) and every registered table."""
    async with engine.begin() as conn:
        if not IS_SQLITE:
            for schema in schemas:
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        await conn.run_sync(Base.metadata.create_all)
