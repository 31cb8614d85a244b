# barberia_core/errores.py
"""
Errores de dominio del core de la barbería.

Los servicios lanzan estas excepciones; core_app las traduce a respuestas
HTTP con el mensaje tal cual, para que el front lo muestre al usuario.
"""
from fastapi import status


class CoreError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, mensaje: str):
        super().__init__(mensaje)
        self.mensaje = mensaje


class ValidationError(CoreError):
    """Datos de entrada faltantes o mal formados."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(CoreError):
    """Servicio, producto, cliente, barbero o cita inexistente."""
    status_code = status.HTTP_404_NOT_FOUND


class AuthorizationError(CoreError):
    """La cita no pertenece al barbero autenticado."""
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(CoreError):
    """Cita duplicada, bono duplicado o venta ya generada."""
    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(ConflictError):
    """Transición no permitida desde el estado actual de la cita."""


class PersistenceError(CoreError):
    """Falló una escritura en la base de datos."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
