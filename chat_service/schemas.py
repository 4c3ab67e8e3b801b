"""Modelos Pydantic (schemas) para validación de datos de entrada/salida en el Servicio de Chat.

Las respuestas se construyen con funciones de conversión explícitas (al final
del módulo). Ninguna de ellas copia password_hash ni password_salt.
"""

from datetime import datetime
from pydantic import BaseModel, Field, EmailStr
from typing import Optional

from chat_service.models import MAX_TEXT_LENGTH, User, Chatroom, ChatHistory

# --- Schemas de Usuario ---

class UserCreate(BaseModel):
    """Schema para los datos requeridos al crear un nuevo usuario."""
    username: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    # email-validator limita la dirección a 254 caracteres, por debajo de MAX_TEXT_LENGTH
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72, description="La contraseña debe tener entre 8 y 72 caracteres")
    first_name: Optional[str] = Field(None, max_length=MAX_TEXT_LENGTH)
    last_name: Optional[str] = Field(None, max_length=MAX_TEXT_LENGTH)


class CreateUserResponse(BaseModel):
    """Datos devueltos tras crear un usuario."""
    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    date_created: Optional[datetime] = None


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool = True
    last_login: Optional[datetime] = None
    date_created: Optional[datetime] = None


# --- Schemas de Token ---

class AuthenticateResponse(BaseModel):
    """Token de acceso JWT más el perfil público del usuario, devuelto tras un login exitoso."""
    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    access_token: str
    token_type: str = "bearer" # Valor por defecto 'bearer' según estándar OAuth2


class TokenPayload(BaseModel):
    """Schema que representa el payload decodificado de un token JWT válido."""
    sub: Optional[str] = None
    exp: Optional[int] = None
    username: Optional[str] = None


# --- Schemas de Sala ---

class RoomCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    password: str = Field(..., min_length=1, max_length=72)
    capacity: int = Field(10, ge=1, description="Máximo de usuarios simultáneos en la sala")


class RoomPassword(BaseModel):
    """Contraseña enviada para entrar a una sala."""
    password: str = Field(..., max_length=MAX_TEXT_LENGTH)


class RoomResponse(BaseModel):
    """Perfil público de una sala."""
    id: str
    title: str
    capacity: int
    total_users: int
    date_created: Optional[datetime] = None


# Las tres formas comparten los mismos campos públicos
CreateRoomResponse = RoomResponse
RoomProfile = RoomResponse


# --- Schemas de Mensaje ---

class MessageCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)


class ChatResponse(BaseModel):
    id: str
    message: str
    user_id: str
    room_id: str
    date_created: Optional[datetime] = None


# --- Conversión entidad -> respuesta ---

def to_create_user_response(user: User) -> CreateUserResponse:
    return CreateUserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        date_created=user.date_created,
    )


def to_user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        is_active=bool(user.is_active),
        last_login=user.last_login,
        date_created=user.date_created,
    )


def to_authenticate_response(user: User, token: str) -> AuthenticateResponse:
    return AuthenticateResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        access_token=token,
    )


def to_room_response(room: Chatroom) -> RoomResponse:
    return RoomResponse(
        id=room.id,
        title=room.title,
        capacity=room.capacity,
        total_users=room.total_users or 0,
        date_created=room.date_created,
    )


def to_chat_response(chat: ChatHistory) -> ChatResponse:
    return ChatResponse(
        id=chat.id,
        message=chat.message,
        user_id=chat.user_id,
        room_id=chat.room_id,
        date_created=chat.date_created,
    )
