"""Funciones de utilidad para el servicio de chat: hash de contraseñas (hash, salt) y manejo de JWT."""

import os
import hmac
import logging
import bcrypt
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from dotenv import load_dotenv
from typing import Dict, Optional, Tuple

from chat_service.errors import ValidationFailure

# Carga variables de entorno desde .env
load_dotenv()

# Configuración del logger
logger = logging.getLogger(__name__)

# --- Configuración de Seguridad ---
SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not SECRET_KEY:
    logger.warning("JWT_SECRET_KEY no está definida en las variables de entorno. Usando clave insegura por defecto para desarrollo.")

    SECRET_KEY = "clave_secreta_insegura_por_defecto_cambiar_urgentemente"

ALGORITHM = "HS256"

ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

# Factor de coste de bcrypt (cada +1 duplica el tiempo de hash)
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# bcrypt solo considera los primeros 72 bytes de la entrada
MAX_PASSWORD_BYTES = 72


# --- Hash de Contraseñas ---
def _encode_password(password: str) -> bytes:
    """Valida la política de contraseñas y devuelve los bytes UTF-8."""
    if not isinstance(password, str) or not password:
        raise ValidationFailure("password", "must be a non-empty string")
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationFailure("password", f"must be at most {MAX_PASSWORD_BYTES} bytes")
    return encoded


def hash_password(password: str) -> Tuple[bytes, bytes]:
    """
    Genera el par (hash, salt) de una contraseña plana con bcrypt.
    Cada llamada usa un salt aleatorio nuevo.

    Raises:
        ValidationFailure: si la contraseña está vacía o supera 72 bytes.
    """
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    password_hash = bcrypt.hashpw(_encode_password(password), salt)
    return password_hash, salt


def verify_password(plain_password: str, stored_hash: bytes, stored_salt: bytes) -> bool:
    """
    Recalcula el hash con el salt almacenado y lo compara en tiempo constante.
    Una contraseña incorrecta es un resultado normal (False), nunca una excepción.
    """
    if not stored_hash or not stored_salt:
        return False
    try:
        candidate = bcrypt.hashpw(_encode_password(plain_password), bytes(stored_salt))
    except (ValidationFailure, ValueError) as e:
        logger.debug(f"Verificación de contraseña descartada: {e}")
        return False
    return hmac.compare_digest(candidate, bytes(stored_hash))


# Par de credenciales ficticio para que la búsqueda fallida cueste lo mismo que una verificación
_DUMMY_HASH, _DUMMY_SALT = hash_password("dummy-password-for-timing")


def burn_verification(plain_password: str) -> None:
    """Ejecuta una verificación contra credenciales ficticias y descarta el resultado."""
    verify_password(plain_password, _DUMMY_HASH, _DUMMY_SALT)


# --- Utilidades para Tokens JWT ---
def create_access_token(data: Dict) -> str:
    """
    Genera un token de acceso JWT con los datos proporcionados y una marca de tiempo de expiración.

    Args:
        data: Diccionario (payload) a incluir en el token (ej., {'sub': user_id}).

    Returns:
        String del JWT codificado.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def issue_token(user) -> str:
    """Emite el token de sesión opaco para un usuario autenticado."""
    return create_access_token({"sub": str(user.id), "username": user.username})


def decode_token(token: str) -> Optional[Dict]:
    """
    Decodifica y valida un token JWT.

    Returns:
        El diccionario del payload si el token es válido y no ha expirado,
        en caso contrario, None.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Fallo en decodificación de token: {e}")
        return None

    if not payload.get("sub"):
        logger.warning("Token sin 'sub' rechazado.")
        return None
    return payload
