import logging
from functools import lru_cache

from app.core.config import settings
from app.storage.base import Storage

logger = logging.getLogger("gestor.storage")


def build_storage(backend: str) -> Storage:
    if backend == "memory":
        from app.storage.memory import MemStorage

        return MemStorage()
    if backend == "sql":
        from app.db import models
        from app.db.session import SessionLocal, engine
        from app.storage.sql import SqlStorage

        models.Base.metadata.create_all(bind=engine)
        return SqlStorage(SessionLocal)
    raise ValueError(f"STORAGE_BACKEND invalido: {backend}")


@lru_cache(maxsize=1)
def get_storage() -> Storage:
    storage = build_storage(settings.STORAGE_BACKEND)
    logger.info("storage backend=%s", settings.STORAGE_BACKEND)
    return storage
