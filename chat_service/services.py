"""Capa de servicio del chat: autenticación de usuarios y salas, altas y consultas.

Los flujos de autenticación devuelven None ante cualquier fallo de
credenciales (usuario/sala inexistente o contraseña incorrecta) sin
distinguir la causa. Las altas propagan errores de errors.py para que la
capa HTTP pueda reaccionar a cada caso.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chat_service import schemas
from chat_service.errors import DuplicateKey, NotFound, PersistenceFailure, RoomFull, ValidationFailure
from chat_service.models import MAX_TEXT_LENGTH, User, Chatroom, ChatHistory
from chat_service.utils import hash_password, verify_password, burn_verification, issue_token

logger = logging.getLogger(__name__)


# --- Búsquedas en el almacén ---

def get_user_by_username(db: Session, username: str) -> Optional[User]:
    # Coincidencia exacta: el username distingue mayúsculas y minúsculas
    return db.query(User).filter(User.username == username).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_room_by_title(db: Session, title: str) -> Optional[Chatroom]:
    return db.query(Chatroom).filter(Chatroom.title == title).first()


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


def get_room(db: Session, room_id: str) -> Optional[Chatroom]:
    """Busca una sala por su UUID o, si room_id no tiene forma de UUID, por su título."""
    if _is_uuid(room_id):
        return db.query(Chatroom).filter(Chatroom.id == room_id).first()
    return get_room_by_title(db, room_id)


# --- Helpers internos ---

def _check_text(field: str, value: Optional[str], required: bool = True) -> None:
    if value is None or not value.strip():
        if required:
            raise ValidationFailure(field, "is required")
        return
    if len(value) > MAX_TEXT_LENGTH:
        raise ValidationFailure(field, f"must be at most {MAX_TEXT_LENGTH} characters")


def _persist(db: Session, entity, what: str):
    """Inserta la entidad y la devuelve refrescada. IntegrityError se propaga para que el llamador la traduzca."""
    try:
        db.add(entity)
        db.commit()
        db.refresh(entity)
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error while creating {what}: {e}", exc_info=True)
        raise PersistenceFailure(f"An error occurred when creating the {what}. Try again later.") from e

    if entity.id is None:
        logger.error(f"Store returned no result when creating {what}.")
        raise PersistenceFailure(f"An error occurred when creating the {what}. Try again later.")
    return entity


def _record_failed_login(db: Session, user: User) -> None:
    # Incremento atómico en la BD: el almacén serializa intentos concurrentes
    try:
        db.query(User).filter(User.id == user.id).update(
            {User.failed_login_attempts: User.failed_login_attempts + 1},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not record failed login for user_id {user.id}: {e}", exc_info=True)


def _record_successful_login(db: Session, user: User) -> None:
    try:
        db.query(User).filter(User.id == user.id).update(
            {User.failed_login_attempts: 0, User.last_login: datetime.now(timezone.utc)},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not record login for user_id {user.id}: {e}", exc_info=True)


def _verify_room(db: Session, password: str, room_id: str) -> Optional[Chatroom]:
    room = get_room(db, room_id) if room_id else None
    if room is None:
        burn_verification(password)
        logger.warning(f"Room authentication failed for room: {room_id}")
        return None
    if not verify_password(password, room.password_hash, room.password_salt):
        logger.warning(f"Room authentication failed for room: {room_id}")
        return None
    return room


# --- Flujo de autenticación ---

def authenticate(db: Session, username: str, password: str) -> Optional[schemas.AuthenticateResponse]:
    """
    Autentica un usuario por username y contraseña.

    Returns:
        AuthenticateResponse con el token de sesión y el perfil público,
        o None si el usuario no existe, está inactivo o la contraseña no coincide.
    """
    logger.info(f"Login attempt for user: {username}")
    user = get_user_by_username(db, username) if username else None

    if user is None:
        burn_verification(password)
        logger.warning(f"Login failed for user: {username}")
        return None

    if not verify_password(password, user.password_hash, user.password_salt):
        _record_failed_login(db, user)
        logger.warning(f"Login failed for user: {username}")
        return None

    if not user.is_active:
        logger.warning(f"Login rejected for inactive user_id: {user.id}")
        return None

    _record_successful_login(db, user)
    token = issue_token(user)
    logger.info(f"Login successful for user_id: {user.id}")
    return schemas.to_authenticate_response(user, token)


def authenticate_room(db: Session, password: str, room_id: str) -> Optional[schemas.RoomProfile]:
    """Verifica la contraseña de una sala y devuelve su perfil público, o None."""
    room = _verify_room(db, password, room_id)
    if room is None:
        return None
    logger.info(f"Room authentication successful for room_id: {room.id}")
    return schemas.to_room_response(room)


# --- Altas ---

def create_user(db: Session, user_in: schemas.UserCreate) -> schemas.CreateUserResponse:
    logger.info(f"Registration attempt for username: {user_in.username}")
    _check_text("username", user_in.username)
    _check_text("email", user_in.email)
    _check_text("first_name", user_in.first_name, required=False)
    _check_text("last_name", user_in.last_name, required=False)

    if get_user_by_username(db, user_in.username):
        logger.warning(f"Registration failed: username {user_in.username} already exists.")
        raise DuplicateKey("username")
    if get_user_by_email(db, user_in.email):
        logger.warning(f"Registration failed: email {user_in.email} already exists.")
        raise DuplicateKey("email")

    password_hash, password_salt = hash_password(user_in.password)
    new_user = User(
        username=user_in.username,
        email=user_in.email,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        password_hash=password_hash,
        password_salt=password_salt,
    )

    try:
        created = _persist(db, new_user, "user")
    except IntegrityError as e:
        # Otro registro concurrente ganó la carrera
        field = "username" if get_user_by_username(db, user_in.username) else "email"
        logger.warning(f"Registration failed: {field} collision for {user_in.username}.")
        raise DuplicateKey(field) from e

    logger.info(f"User created with ID: {created.id}")
    return schemas.to_create_user_response(created)


def create_room(db: Session, room_in: schemas.RoomCreate, user_id: str) -> schemas.CreateRoomResponse:
    logger.info(f"Room creation attempt by user_id {user_id}: {room_in.title}")
    _check_text("title", room_in.title)
    # Un título con forma de UUID sería inalcanzable por get_room
    if _is_uuid(room_in.title):
        raise ValidationFailure("title", "must not be a UUID")
    if room_in.capacity is None or room_in.capacity < 1:
        raise ValidationFailure("capacity", "must be at least 1")

    if get_room_by_title(db, room_in.title):
        logger.warning(f"Room creation failed: title {room_in.title} already exists.")
        raise DuplicateKey("title")

    password_hash, password_salt = hash_password(room_in.password)
    new_room = Chatroom(
        title=room_in.title,
        capacity=room_in.capacity,
        total_users=0,
        password_hash=password_hash,
        password_salt=password_salt,
    )

    try:
        created = _persist(db, new_room, "room")
    except IntegrityError as e:
        logger.warning(f"Room creation failed: title collision for {room_in.title}.")
        raise DuplicateKey("title") from e

    logger.info(f"Room created with ID: {created.id}")
    return schemas.to_room_response(created)


def create_message(db: Session, message_in: schemas.MessageCreate, user_id: str, room_id: str) -> schemas.ChatResponse:
    _check_text("message", message_in.message)

    if get_user_by_id(db, user_id) is None:
        raise NotFound("user", user_id)
    room = get_room(db, room_id)
    if room is None:
        raise NotFound("room", room_id)

    entry = ChatHistory(message=message_in.message, user_id=user_id, room_id=room.id)
    try:
        created = _persist(db, entry, "message")
    except IntegrityError as e:
        logger.error(f"Integrity error while storing message in room {room.id}: {e}", exc_info=True)
        raise PersistenceFailure("An error occurred when creating the message. Try again later.") from e

    return schemas.to_chat_response(created)


# --- Membresía de salas ---

def join_room(db: Session, password: str, room_id: str) -> Optional[schemas.RoomProfile]:
    """
    Autentica la sala y ocupa una plaza.

    Returns:
        El perfil de la sala actualizado, o None si la autenticación falla.

    Raises:
        RoomFull: si total_users ya alcanzó capacity.
    """
    room = _verify_room(db, password, room_id)
    if room is None:
        return None

    try:
        # El filtro sobre total_users hace que el UPDATE no supere la capacidad
        updated = db.query(Chatroom).filter(
            Chatroom.id == room.id,
            Chatroom.total_users < Chatroom.capacity,
        ).update({Chatroom.total_users: Chatroom.total_users + 1}, synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error while joining room {room.id}: {e}", exc_info=True)
        raise PersistenceFailure("Could not join the room. Try again later.") from e

    if not updated:
        logger.warning(f"Join rejected: room {room.id} is full.")
        raise RoomFull(room.id)

    db.refresh(room)
    return schemas.to_room_response(room)


def leave_room(db: Session, room_id: str) -> schemas.RoomProfile:
    # total_users es un contador orientativo: no hay tabla de miembros que diga quién entró
    room = get_room(db, room_id)
    if room is None:
        raise NotFound("room", room_id)

    try:
        db.query(Chatroom).filter(
            Chatroom.id == room.id,
            Chatroom.total_users > 0,
        ).update({Chatroom.total_users: Chatroom.total_users - 1}, synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error while leaving room {room.id}: {e}", exc_info=True)
        raise PersistenceFailure("Could not leave the room. Try again later.") from e

    db.refresh(room)
    return schemas.to_room_response(room)


# --- Consultas ---

def list_users(db: Session) -> List[schemas.UserResponse]:
    users = db.query(User).order_by(User.username.asc()).all()
    return [schemas.to_user_response(u) for u in users]


def get_user(db: Session, user_id: str) -> schemas.UserResponse:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotFound("user", user_id)
    return schemas.to_user_response(user)


def list_rooms(db: Session) -> List[schemas.RoomResponse]:
    rooms = db.query(Chatroom).order_by(Chatroom.title.asc()).all()
    return [schemas.to_room_response(r) for r in rooms]


def list_messages(db: Session, room_id: str) -> List[schemas.ChatResponse]:
    room = get_room(db, room_id)
    if room is None:
        raise NotFound("room", room_id)
    chats = (
        db.query(ChatHistory)
        .filter(ChatHistory.room_id == room.id)
        .order_by(ChatHistory.date_created.asc(), ChatHistory.seq.asc())
        .all()
    )
    return [schemas.to_chat_response(c) for c in chats]
