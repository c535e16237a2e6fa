from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from questionbank.core.config import settings


class Base(DeclarativeBase):
    pass


engine = create_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO, future=True, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    # Registers the mapped tables on Base.metadata.
    import questionbank.models.orm  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
