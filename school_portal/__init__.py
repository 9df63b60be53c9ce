from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .database import Base
from .services import seed_default_admin


def init_database(engine: Engine, session_factory: sessionmaker, settings: Settings) -> None:
    Base.metadata.create_all(bind=engine)
    db = session_factory()
    try:
        seed_default_admin(db, username=settings.admin_username, password=settings.admin_password)
    finally:
        db.close()


__all__ = ["init_database"]
