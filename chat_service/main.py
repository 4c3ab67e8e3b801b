import logging
import time
from typing import List
from fastapi import FastAPI, Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from fastapi.responses import Response, JSONResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.orm import Session

# Importaciones locales
from chat_service import schemas, services
from chat_service.db import engine, Base, get_db
from chat_service.errors import DuplicateKey, NotFound, PersistenceFailure, RoomFull, ValidationFailure
from chat_service.utils import decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login")

# Configura logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Crea tablas si no existen al iniciar
try:
    if engine is not None:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables verified/created.")
except Exception as e:
    logger.error(f"Error initializing database: {e}", exc_info=True)


# Inicializa FastAPI
app = FastAPI(
    title="Chat Service",
    description="Handles user registration and authentication, password-protected chatrooms and chat history.",
    version="1.0.0"
)

# --- Métricas Prometheus ---
REQUEST_COUNT = Counter(
    "chat_requests_total",
    "Total requests processed by Chat Service",
    ["method", "endpoint", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "chat_request_latency_seconds",
    "Request latency in seconds for Chat Service",
    ["endpoint"]
)
LOGIN_COUNT = Counter("chat_logins_total", "Login attempts", ["outcome"])
ROOM_AUTH_COUNT = Counter("chat_room_authentications_total", "Room authentication attempts", ["outcome"])
MESSAGE_CREATED_COUNT = Counter("chat_messages_created_total", "Mensajes guardados")


def _endpoint_label(path: str) -> str:
    """Agrupa las rutas con IDs para no disparar la cardinalidad de las métricas."""
    parts = path.split("/")
    if len(parts) > 2 and parts[1] in ("rooms", "users") and parts[2] and parts[2] != "me":
        parts[2] = "{room_id}" if parts[1] == "rooms" else "{user_id}"
    return "/".join(parts)


# --- Middleware para Métricas ---
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    response = None
    status_code = 500 # Default a 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        logger.error(f"Unhandled exception during request processing: {exc}", exc_info=True)
        response = JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
    finally:
        latency = time.time() - start_time
        endpoint = _endpoint_label(request.url.path)
        final_status_code = getattr(response, 'status_code', status_code)

        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=final_status_code
        ).inc()

    return response


# --- Traducción de errores de servicio a HTTP ---
def to_http_exception(error: Exception) -> HTTPException:
    if isinstance(error, DuplicateKey):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"{error.field.capitalize()} already registered")
    if isinstance(error, ValidationFailure):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{error.entity.capitalize()} not found")
    if isinstance(error, RoomFull):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room is full")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error) or "Internal error")


# --- Dependencia de autenticación ---
def get_current_user_id(token: str = Depends(oauth2_scheme)) -> str:
    """Valida el bearer token y devuelve el 'sub' (ID del usuario)."""
    payload = decode_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload["sub"]


# --- Endpoints de Salud y Métricas ---
@app.get("/metrics", tags=["Monitoring"])
def metrics():
    """Exposes application metrics for Prometheus."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", tags=["Monitoring"])
def health_check(db: Session = Depends(get_db)):
    """Performs a basic health check of the service, including the database."""
    db_status = "ok"
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check fallido - Error de BD: {e}", exc_info=True)
        db_status = "error"
    return {"status": "ok" if db_status == "ok" else "degraded", "service": "chat_service", "database": db_status}


# --- Endpoints de Autenticación ---

@app.post("/register", response_model=schemas.CreateUserResponse, status_code=status.HTTP_201_CREATED, tags=["Authentication"])
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    """
    Registers a new user with username, email and password.
    Username and email must be unique.
    """
    try:
        return services.create_user(db, user)
    except (DuplicateKey, ValidationFailure, PersistenceFailure) as e:
        raise to_http_exception(e)


@app.post("/login", response_model=schemas.AuthenticateResponse, tags=["Authentication"])
def login(db: Session = Depends(get_db), form_data: OAuth2PasswordRequestForm = Depends()):
    """
    Authenticates a user based on username and password (form-data).
    Returns a JWT access token and the public user profile.
    """
    result = services.authenticate(db, form_data.username, form_data.password)
    if result is None:
        LOGIN_COUNT.labels(outcome="failure").inc()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    LOGIN_COUNT.labels(outcome="success").inc()
    return result


@app.get("/verify", response_model=schemas.TokenPayload, tags=["Internal"])
def verify(token: str):
    """
    Validates a JWT (passed as query parameter 'token') and returns its payload.
    """
    payload = decode_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return {"sub": payload.get("sub"), "exp": payload.get("exp"), "username": payload.get("username")}


# --- Endpoints de Usuarios ---

@app.get("/users", response_model=List[schemas.UserResponse], tags=["Users"])
def get_users(db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    return services.list_users(db)


@app.get("/users/me", response_model=schemas.UserResponse, tags=["Users"])
def read_users_me(db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    try:
        return services.get_user(db, current_user_id)
    except NotFound as e:
        raise to_http_exception(e)


@app.get("/users/{user_id}", response_model=schemas.UserResponse, tags=["Users"])
def get_user_by_id(user_id: str, db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    """Returns the public profile of a user by ID."""
    try:
        return services.get_user(db, user_id)
    except NotFound as e:
        logger.warning(f"Usuario con ID {user_id} no encontrado.")
        raise to_http_exception(e)


# --- Endpoints de Salas ---

@app.post("/rooms", response_model=schemas.CreateRoomResponse, status_code=status.HTTP_201_CREATED, tags=["Rooms"])
def create_room(room: schemas.RoomCreate, db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    """Creates a password-protected chatroom. The title must be unique."""
    try:
        return services.create_room(db, room, current_user_id)
    except (DuplicateKey, ValidationFailure, PersistenceFailure) as e:
        raise to_http_exception(e)


@app.get("/rooms", response_model=List[schemas.RoomResponse], tags=["Rooms"])
def get_rooms(db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    return services.list_rooms(db)


@app.post("/rooms/{room_id}/authenticate", response_model=schemas.RoomProfile, tags=["Rooms"])
def authenticate_room(room_id: str, body: schemas.RoomPassword, db: Session = Depends(get_db)):
    """
    Checks a room password. `room_id` may be the room UUID or its title.
    Returns the public room profile on success.
    """
    result = services.authenticate_room(db, body.password, room_id)
    if result is None:
        ROOM_AUTH_COUNT.labels(outcome="failure").inc()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect room or password")
    ROOM_AUTH_COUNT.labels(outcome="success").inc()
    return result


@app.post("/rooms/{room_id}/join", response_model=schemas.RoomProfile, tags=["Rooms"])
def join_room(room_id: str, body: schemas.RoomPassword, db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    """Authenticates the room and takes one of its seats."""
    try:
        result = services.join_room(db, body.password, room_id)
    except (RoomFull, PersistenceFailure) as e:
        raise to_http_exception(e)
    if result is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect room or password")
    logger.info(f"User {current_user_id} joined room {result.id}")
    return result


@app.post("/rooms/{room_id}/leave", response_model=schemas.RoomProfile, tags=["Rooms"])
def leave_room(room_id: str, db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    try:
        result = services.leave_room(db, room_id)
    except (NotFound, PersistenceFailure) as e:
        raise to_http_exception(e)
    logger.info(f"User {current_user_id} left room {result.id}")
    return result


# --- Endpoints de Mensajes ---

@app.post("/rooms/{room_id}/messages", response_model=schemas.ChatResponse, status_code=status.HTTP_201_CREATED, tags=["Messages"])
def create_message(room_id: str, body: schemas.MessageCreate, db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    """Stores a chat message from the authenticated user in the room."""
    try:
        result = services.create_message(db, body, current_user_id, room_id)
    except (NotFound, ValidationFailure, PersistenceFailure) as e:
        raise to_http_exception(e)
    MESSAGE_CREATED_COUNT.inc()
    return result


@app.get("/rooms/{room_id}/messages", response_model=List[schemas.ChatResponse], tags=["Messages"])
def get_messages(room_id: str, db: Session = Depends(get_db), current_user_id: str = Depends(get_current_user_id)):
    """Returns the room's chat history in creation order."""
    try:
        return services.list_messages(db, room_id)
    except NotFound as e:
        raise to_http_exception(e)
