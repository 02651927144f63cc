from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .core.config import settings

# Base para modelos (lo importa storefront.main)
Base = declarative_base()

SQLALCHEMY_DATABASE_URL = settings.database_url
_IS_SQLITE = SQLALCHEMY_DATABASE_URL.startswith("sqlite")
_IS_MEMORY = SQLALCHEMY_DATABASE_URL in ("sqlite://", "sqlite:///:memory:")

if _IS_MEMORY:
    # Una sola conexion compartida; si no, cada conexion ve una base vacia
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
elif _IS_SQLITE:
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 60},
        pool_pre_ping=True,
    )
else:
    engine = create_engine(SQLALCHEMY_DATABASE_URL, pool_pre_ping=True)


if _IS_SQLITE:
    # PRAGMAs por conexion
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):
        cur = dbapi_conn.cursor()
        try:
            if not _IS_MEMORY:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            cur.execute("PRAGMA busy_timeout=60000;")
            cur.execute("PRAGMA foreign_keys=ON;")
        finally:
            cur.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Dependencia FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
