import logging

from app.core.config import settings
from app.core.security import get_password_hash
from app.storage import schemas
from app.storage.base import Storage

logger = logging.getLogger("gestor.init_db")


async def seed_initial_data(storage: Storage) -> schemas.User | None:
    """Garante o usuario administrador padrao."""
    if not settings.SEED_ADMIN:
        return None
    existing = await storage.get_user_by_username(settings.ADMIN_USERNAME)
    if existing:
        return existing
    admin = await storage.create_user(
        schemas.UserCreate(
            username=settings.ADMIN_USERNAME,
            password_hash=get_password_hash(settings.ADMIN_PASSWORD),
            name="Admin User",
            email=settings.ADMIN_EMAIL,
            role="admin",
        )
    )
    logger.info("Usuario administrador criado: %s", admin.username)
    return admin
