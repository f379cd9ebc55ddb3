import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .core.config import settings

# Base para modelos (lo importa mercado.main)
Base = declarative_base()

# Ruta absoluta al mercado.db (raíz del proyecto)
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
DB_FILE = os.path.join(BASE_DIR, "mercado.db")
ABS_URL = "sqlite:///" + DB_FILE.replace("\\", "/")

# Permite override por variable de entorno (DB_URL)
SQLALCHEMY_DATABASE_URL = settings.database_url or ABS_URL

_IS_SQLITE = SQLALCHEMY_DATABASE_URL.startswith("sqlite")
_IN_MEMORY = SQLALCHEMY_DATABASE_URL in ("sqlite://", "sqlite:///:memory:")

_engine_kwargs = {"pool_pre_ping": True}
if _IS_SQLITE:
    _engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": settings.db_busy_timeout}
if _IN_MEMORY:
    # una sola conexión compartida; si no, cada hilo ve una BD vacía
    _engine_kwargs["poolclass"] = StaticPool

engine = create_engine(SQLALCHEMY_DATABASE_URL, **_engine_kwargs)


if _IS_SQLITE:
    # PRAGMAs por conexión
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):
        cur = dbapi_conn.cursor()
        try:
            if not _IN_MEMORY:
                cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute(f"PRAGMA busy_timeout={settings.db_busy_timeout * 1000};")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.execute("PRAGMA synchronous=NORMAL;")
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
