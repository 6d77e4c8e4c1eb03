from sqlalchemy import create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.settings import settings

SQLALCHEMY_DATABASE_URL = settings.database_url

connect_args: dict = {}
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False, "timeout": 30}
else:
    try:
        url = make_url(SQLALCHEMY_DATABASE_URL)
        if (url.drivername or "").startswith("postgresql") and url.host not in {None, "localhost", "127.0.0.1"}:
            connect_args = {"sslmode": "require"}
    except Exception:
        connect_args = {}

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
