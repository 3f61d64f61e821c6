from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings


def build_engine(database_uri: str):
    if database_uri.startswith("sqlite"):
        if ":memory:" in database_uri or database_uri in {"sqlite://", "sqlite:///"}:
            return create_engine(
                database_uri,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_uri, connect_args={"check_same_thread": False})
    return create_engine(database_uri, pool_pre_ping=True)


engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
