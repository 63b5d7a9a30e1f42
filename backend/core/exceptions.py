from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Identifiants invalides ou token expiré",
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden_exception(detail: str = "Accès refusé") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )


# ── Erreurs métier ────────────────────────────────────────────────────────────
class AppException(Exception):
    """Erreur métier rendue telle quelle à l'appelant."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(AppException):
    def __init__(self, resource: str = "Ressource", resource_id: Any = None):
        super().__init__(
            message=f"{resource} introuvable",
            error_code="ERR_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id},
        )


class PreconditionFailedError(AppException):
    """Statut incompatible ou QR invalide : l'appelant peut corriger et réessayer."""

    def __init__(self, message: str, error_code: str = "ERR_PRECONDITION", **details: Any):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class OwnershipError(AppException):
    def __init__(self, message: str = "Vous n'êtes pas assigné à ce colis", **details: Any):
        super().__init__(
            message=message,
            error_code="ERR_NOT_ASSIGNED",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class PersistenceError(AppException):
    def __init__(self, operation: str):
        super().__init__(
            message="Erreur de persistance, commande annulée",
            error_code="ERR_PERSISTENCE",
            details={"operation": operation},
        )


class QREncodingError(AppException):
    def __init__(self):
        super().__init__(
            message="Échec de génération du QR code",
            error_code="ERR_QR_ENCODING",
        )


def qr_mismatch_error(tracking_number: str) -> PreconditionFailedError:
    return PreconditionFailedError(
        "QR code invalide", error_code="ERR_QR_MISMATCH", tracking_number=tracking_number,
    )


def wrong_status_error(message: str, current_status: str) -> PreconditionFailedError:
    return PreconditionFailedError(
        message, error_code="ERR_WRONG_STATUS", current_status=current_status,
    )


def conflict_error(current_status: str) -> PreconditionFailedError:
    return PreconditionFailedError(
        "Le colis a été modifié entre-temps, réessayez",
        error_code="ERR_CONFLICT", current_status=current_status,
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message":    exc.message,
            "details":    exc.details,
        },
    )
