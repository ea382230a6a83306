import os
from sqlalchemy import engine_from_config, pool
from alembic import context
from app.db.session import Base
import app.db.models  # noqa
from app.core.config import settings

config = context.config
target_metadata = Base.metadata

VERSION_TABLE = "alembic_version_storefront"

def database_url():
    return os.getenv("POSTGRES_DSN") or settings.POSTGRES_DSN

def run_migrations_offline():
    url = database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table=VERSION_TABLE,
        compare_type=True
    )
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online():
    connectable = engine_from_config(
        {"sqlalchemy.url": database_url()},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table=VERSION_TABLE,
            compare_type=True
        )
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
