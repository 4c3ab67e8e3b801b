"""Configuración de la conexión a la base de datos usando SQLAlchemy."""

import os
import logging
from fastapi import HTTPException
from sqlalchemy import create_engine, exc
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

# Configuración del logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Carga variables de entorno desde el archivo .env
load_dotenv()


def build_database_url() -> str:
    """
    Resuelve la URL de conexión.
    DATABASE_URL tiene prioridad; si no existe se usan las credenciales
    DB_USER/DB_PASS/DB_HOST/DB_NAME de MariaDB y, en último caso, SQLite local.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    required_db_vars = {"DB_USER", "DB_PASS", "DB_HOST", "DB_NAME"}
    missing_vars = required_db_vars - set(os.environ)
    if not missing_vars:
        return (
            f"mysql+pymysql://{os.getenv('DB_USER')}:{os.getenv('DB_PASS')}"
            f"@{os.getenv('DB_HOST')}/{os.getenv('DB_NAME')}"
        )

    logger.warning(f"Faltan variables de entorno para MariaDB ({', '.join(sorted(missing_vars))}). Usando SQLite local.")
    return "sqlite:///./chat.db"


def make_engine(url: str):
    """Crea el motor (Engine) de SQLAlchemy con las opciones adecuadas para el dialecto."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # Una base en memoria solo existe mientras viva su única conexión
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    # pool_pre_ping=True ayuda a manejar conexiones inactivas en el pool.
    return create_engine(url, pool_pre_ping=True)


SQLALCHEMY_DATABASE_URL = build_database_url()

try:
    engine = make_engine(SQLALCHEMY_DATABASE_URL)
    # Intenta conectar para verificar credenciales y disponibilidad al inicio
    with engine.connect() as connection:
        logger.info("Conexión a la base de datos establecida exitosamente.")
except exc.SQLAlchemyError as e:
    logger.error(f"Error al conectar con la base de datos: {e}", exc_info=True)
    engine = None # Aseguramos que engine sea None si falla la conexión


# Fábrica de sesiones: cada petición web usa su propia sesión.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine else None

# Clase base para los modelos declarativos (User, Chatroom, ChatHistory).
Base = declarative_base()


# --- Función de Dependencia para FastAPI ---
def get_db():
    """
    Generador de dependencia de FastAPI para obtener una sesión de base de datos.
    Asegura que la sesión se cierre correctamente después de cada petición.
    """
    if SessionLocal is None:
        logger.error("La fábrica de sesiones de base de datos no está inicializada.")
        raise HTTPException(status_code=503, detail="Database service unavailable.")

    db = SessionLocal()
    try:
        yield db
    except exc.SQLAlchemyError as e:
        logger.error(f"Error de base de datos durante la petición: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=503, detail="Database error.")
    finally:
        db.close()
