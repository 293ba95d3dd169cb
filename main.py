from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS
from database.conexion import Base, engine
import models  # 👈 asegura que todos los modelos estén registrados
from endpoints import rooms, stays
from utils.logging_utils import get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        Base.metadata.create_all(bind=engine)
        get_logger().info("[OK] Tablas creadas (o ya existian)")
    except Exception as e:
        get_logger().error(f"[ERROR] Error creando tablas: {e}")
    yield


app = FastAPI(title="Motel Stays", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],         # GET, POST, PUT, DELETE...
    allow_headers=["*"],
)

app.include_router(stays.router)
app.include_router(rooms.router)


@app.get("/")
def read_root():
    return {"message": "Motel Stays API"}
