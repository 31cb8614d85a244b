# barberia_core/core_app.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from barberia_core.config import LOG_LEVEL
from barberia_core.db.conexion import init_db
from barberia_core.errores import CoreError
from barberia_core.servicios import (
    autenticacion,
    catalogo,
    citas,
    clientes,
    disponibilidad,
    fidelizacion,
    reportes,
    ventas,
)

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------- Eventos de arranque ----------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Inicializa la base de datos de la barbería al arrancar la app.
    """
    init_db()
    logger.info("Base de datos lista")
    yield


app = FastAPI(title="Barbería Core API", lifespan=lifespan)


# ---------- CORS ----------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],          # En producción se puede restringir al dominio del front
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Errores ----------

@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError):
    if exc.status_code >= 500:
        logger.error("%s %s: %s", request.method, request.url.path, exc.mensaje)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.mensaje})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Datos mal formados: 400 con un mensaje legible en vez del 422 de FastAPI.
    """
    errores = exc.errors()
    logger.warning("Validation error for %s: %s", request.url.path, errores)
    campos = ", ".join(
        ".".join(str(p) for p in e.get("loc", ()) if p != "body") or "body"
        for e in errores
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": f"Datos inválidos o faltantes: {campos}", "errores": jsonable_encoder(errores)},
    )


# ---------- Routers ----------

app.include_router(
    autenticacion.router,
    prefix="/api/auth",
    tags=["Autenticacion"],
)
app.include_router(
    catalogo.router,
    prefix="/api",
    tags=["Catalogo"],
)
app.include_router(
    disponibilidad.router,
    prefix="/api",
    tags=["Citas"],
)
app.include_router(
    citas.router,
    prefix="/api",
    tags=["Citas"],
)
app.include_router(
    ventas.router,
    prefix="/api",
    tags=["Ventas"],
)
app.include_router(
    clientes.router,
    prefix="/api/clientes",
    tags=["Clientes"],
)
app.include_router(
    fidelizacion.router,
    prefix="/api",
    tags=["Fidelizacion"],
)
app.include_router(
    reportes.router,
    prefix="/api/reportes",
    tags=["Reportes"],
)


# ---------- Endpoint de salud básico ----------

@app.get("/api/salud")
def check_salud():
    """
    Endpoint de prueba para verificar que la API está corriendo.
    """
    return {
        "estado": "ok",
        "mensaje": "API Barbería Core funcionando",
    }
