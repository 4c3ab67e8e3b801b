"""Define los modelos de las tablas 'Users', 'Chatrooms' y 'ChatHistory' usando SQLAlchemy ORM."""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, LargeBinary, ForeignKey, func, true
from sqlalchemy.dialects import mysql
from chat_service.db import Base

# Longitud máxima de los campos de texto (character varying(255))
MAX_TEXT_LENGTH = 255

# MariaDB/MySQL descartan las fracciones de segundo si no se pide DATETIME(6)
Timestamp = DateTime(timezone=True).with_variant(mysql.DATETIME(timezone=True, fsp=6), "mysql", "mariadb")


def generate_uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    Modelo SQLAlchemy que representa la tabla 'Users'.
    Almacena la identidad del usuario y su par de credenciales (hash, salt).
    """
    __tablename__ = "Users"

    # Identificador opaco (UUID) generado al crear el registro
    id = Column(String(36), primary_key=True, default=generate_uuid)

    # Username y email son únicos en toda la tabla
    username = Column(String(MAX_TEXT_LENGTH), unique=True, index=True, nullable=False)
    email = Column(String(MAX_TEXT_LENGTH), unique=True, index=True, nullable=False)

    first_name = Column(String(MAX_TEXT_LENGTH), nullable=True)
    last_name = Column(String(MAX_TEXT_LENGTH), nullable=True)

    # El hash no sirve sin su salt: siempre se guardan juntos
    password_hash = Column(LargeBinary, nullable=False)
    password_salt = Column(LargeBinary, nullable=False)

    role = Column(String(MAX_TEXT_LENGTH), nullable=True, default="user")
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    # Se incrementa con cada login fallido; no hay política de bloqueo que lo lea.
    failed_login_attempts = Column(Integer, nullable=False, default=0, server_default="0")

    date_created = Column(Timestamp, server_default=func.now())
    date_modified = Column(Timestamp, server_default=func.now(), onupdate=func.now())
    last_login = Column(Timestamp, nullable=True)


class Chatroom(Base):
    """
    Modelo SQLAlchemy que representa la tabla 'Chatrooms'.
    Las salas también están protegidas por contraseña.
    """
    __tablename__ = "Chatrooms"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(MAX_TEXT_LENGTH), unique=True, index=True, nullable=False)

    # total_users nunca debe superar capacity (ver services.join_room)
    capacity = Column(Integer, nullable=False, default=10)
    total_users = Column(Integer, nullable=False, default=0, server_default="0")

    password_hash = Column(LargeBinary, nullable=False)
    password_salt = Column(LargeBinary, nullable=False)

    date_created = Column(Timestamp, server_default=func.now())


class ChatHistory(Base):
    """
    Modelo SQLAlchemy que representa la tabla 'ChatHistory'.
    Cada mensaje referencia a su autor y a su sala; no es dueño de ninguno.
    """
    __tablename__ = "ChatHistory"

    # Clave autoincremental interna: desempata mensajes con la misma marca de tiempo
    seq = Column(Integer, primary_key=True, autoincrement=True)
    # Identificador opaco expuesto a los clientes
    id = Column(String(36), unique=True, index=True, nullable=False, default=generate_uuid)
    message = Column(String(MAX_TEXT_LENGTH), nullable=False)

    user_id = Column(String(36), ForeignKey("Users.id"), nullable=False, index=True)
    room_id = Column(String(36), ForeignKey("Chatrooms.id"), nullable=False, index=True)

    date_created = Column(Timestamp, default=lambda: datetime.now(timezone.utc), nullable=False)
