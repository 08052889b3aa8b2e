from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
import os
from dotenv import load_dotenv, find_dotenv

# При запуске из разных директорий load_dotenv() может не найти корневой .env
load_dotenv(find_dotenv(usecwd=True), override=False)


def build_database_url() -> str:
    """DATABASE_URL из окружения, приведенный к драйверу psycopg3"""
    raw = os.getenv("DATABASE_URL")

    if not raw:
        db_host = os.getenv("DB_HOST", "localhost")
        db_port = os.getenv("DB_PORT", "5432")
        db_user = os.getenv("DB_USER", "segments_user")
        db_password = os.getenv("DB_PASSWORD", "segments_password")
        db_name = os.getenv("DB_NAME", "segments_db")
        return f"postgresql+psycopg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"

    if raw.startswith("postgresql+asyncpg://"):
        raw = raw.replace("postgresql+asyncpg://", "postgresql+psycopg://", 1)
    elif raw.startswith("postgresql://"):
        raw = raw.replace("postgresql://", "postgresql+psycopg://", 1)
    elif raw.startswith("postgres://"):
        raw = raw.replace("postgres://", "postgresql+psycopg://", 1)
    return raw


def make_engine(database_url: str, **kwargs):
    """Async engine; для SQLite параметры пула не передаются"""
    options = {"echo": False, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10)
    options.update(kwargs)
    return create_async_engine(database_url, **options)


def make_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


DATABASE_URL = build_database_url()

engine = make_engine(DATABASE_URL)

AsyncSessionLocal = make_session_factory(engine)

Base = declarative_base()
