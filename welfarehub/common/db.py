"""Engine, session factory and declarative base shared by the services."""

from sqlalchemy import JSON, MetaData, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from welfarehub.common.config import settings

# Constraint names match the ones written in the alembic revisions.
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def _engine_options(dsn: str) -> dict:
    if dsn.startswith("sqlite"):
        # One shared connection so an in-memory database survives across sessions.
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 5}


engine = create_engine(settings.postgres_dsn, **_engine_options(settings.postgres_dsn))
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for every welfarehub table."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
