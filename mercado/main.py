import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .core.config import settings
from .core.errors import install_error_handlers
from .db import Base, engine
from .middleware.idempotency import install_idempotency
from .routers import catalog, health, pdv

# IMPORTA MODELOS antes de create_all
from .models import product as _product_models
from .models import sale as _sale_models
from .models import stock as _stock_models
from .models import store as _store_models

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Crea tablas faltantes (desarrollo)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("%s %s starting up (env=%s)", settings.app_name, settings.app_version, settings.app_env)
    yield
    logger.info("%s shutting down", settings.app_name)


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

install_error_handlers(app)
install_idempotency(app)

app.include_router(health.router)
app.include_router(catalog.router)
app.include_router(pdv.router)
