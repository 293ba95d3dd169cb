"""
Configuración del módulo de estancias
Lee variables de entorno (.env) para base de datos, zona horaria y reglas de cobro
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _build_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    if os.getenv("DB_HOST"):
        # URL clásica (síncrona) con psycopg2
        return (
            f"postgresql://{os.getenv('DB_USER')}:{os.getenv('DB_PASSWORD')}"
            f"@{os.getenv('DB_HOST')}:{os.getenv('DB_PORT', '5432')}/{os.getenv('DB_NAME')}"
        )
    return "sqlite:///./motel_stays.db"


# Base de datos
DATABASE_URL = _build_database_url()

# Zona horaria del establecimiento (define qué días son fin de semana)
HOTEL_TIMEZONE = os.getenv("HOTEL_TIMEZONE", "America/Mexico_City")

# Reglas de estancia
TOLERANCE_MINUTES = int(os.getenv("TOLERANCE_MINUTES", "60"))
DEFAULT_STAY_HOURS = int(os.getenv("DEFAULT_STAY_HOURS", "4"))
BASE_OCCUPANCY = int(os.getenv("BASE_OCCUPANCY", "2"))  # personas incluidas en el precio base

# Logging
LOG_FILE = os.getenv("LOG_FILE", "motel_logs.txt")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# CORS
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]
