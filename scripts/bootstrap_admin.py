import asyncio
import os

from app.core.security import get_password_hash
from app.db.init_db import seed_initial_data
from app.storage.provider import get_storage


async def main() -> None:
    storage = get_storage()
    admin = await seed_initial_data(storage)
    if admin is None:
        raise SystemExit("SEED_ADMIN desabilitado.")

    new_password = os.getenv("ADMIN_RESET_PASSWORD")
    if new_password:
        # troca de senha direto no banco; nao passa pela auditoria da API
        from app.db import models
        from app.db.session import SessionLocal

        with SessionLocal() as db:
            row = db.get(models.User, admin.id)
            row.password_hash = get_password_hash(new_password)
            db.commit()
        print(f"Senha redefinida: {admin.username}")
    print(f"Admin ativo: {admin.username} ({admin.email})")


if __name__ == "__main__":
    asyncio.run(main())
