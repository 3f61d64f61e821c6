import os

os.environ["STORAGE_BACKEND"] = "memory"
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite:///:memory:")

import pytest
from sqlalchemy.orm import sessionmaker

from app.db import models
from app.db.session import build_engine


@pytest.fixture()
def db_session():
    engine = build_engine("sqlite:///:memory:")
    models.Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    db = SessionLocal()
    yield db
    db.close()
    engine.dispose()
