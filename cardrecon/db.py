from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import settings

class Base(DeclarativeBase):
    pass

def make_engine(url: str):
    if url.startswith("sqlite"):
        # SQLite only knows SERIALIZABLE / READ UNCOMMITTED
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, isolation_level="READ COMMITTED", pool_pre_ping=True)

engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
