from logging.config import fileConfig
from sqlalchemy import engine_from_config
from sqlalchemy import pool
from alembic import context
import os
import sys

# Добавляем путь к backend
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../backend'))

# this is the Alembic Config object
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# add your model's MetaData object here
# .env загружается при импорте connection
from segment_engine.database.connection import Base, build_database_url
from segment_engine.models import (
    CustomerSegment, SegmentAssignment, SegmentAnalytics, Customer, CustomerMetric, CustomerSubscription
)

target_metadata = Base.metadata

database_url = build_database_url()

# Отладочный вывод (скрываем пароль)
url_parts = database_url.split('@')
if len(url_parts) > 1:
    print(f"Database connection: ***@{url_parts[1]}")

# configparser требует экранирования %
config.set_main_option("sqlalchemy.url", database_url.replace('%', '%%'))


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode.

    psycopg3 работает и в синхронном режиме, поэтому используем обычный
    engine_from_config с тем же URL, что и приложение.
    """
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
