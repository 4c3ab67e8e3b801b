"""Excepciones de la capa de servicio.

Los fallos de autenticación NO son excepciones: los flujos de autenticación
devuelven None para que "usuario inexistente" y "contraseña incorrecta" sean
indistinguibles para quien llama.
"""


class ChatServiceError(Exception):
    """Clase base para todos los errores del servicio de chat."""
    pass


class ValidationFailure(ChatServiceError):
    """Un campo viola una restricción del modelo (requerido, longitud máxima...)."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class DuplicateKey(ChatServiceError):
    """Violación de unicidad al crear (username, email o título de sala)."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} already exists")


class PersistenceFailure(ChatServiceError):
    """El almacén no está disponible o no devolvió resultado."""
    pass


class NotFound(ChatServiceError):
    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} '{key}' not found")


class RoomFull(ChatServiceError):
    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room '{room_id}' is full")
