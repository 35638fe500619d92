from typing import Dict, Optional

from fastapi import HTTPException, status


# ── Erreurs métier (levées par les services) ──────────────────────────────────
class CourierError(Exception):
    """Base des erreurs métier. `status_code` sert au mapping HTTP dans main.py."""
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(CourierError):
    """Champs manquants ou mal formés. `errors` : {champ: message}."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, errors: Dict[str, str], detail: str = "Données invalides"):
        super().__init__(detail)
        self.errors = errors

    def __str__(self) -> str:
        fields = ", ".join(sorted(self.errors))
        return f"{self.detail} ({fields})"


class NotFoundError(CourierError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str = "Ressource"):
        super().__init__(f"{resource} introuvable")
        self.resource = resource


class InvalidTransitionError(CourierError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current: str, target: str):
        super().__init__(f"Transition interdite : {current} → {target}")
        self.current = current
        self.target = target


class ForbiddenError(CourierError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, detail: str = "Accès refusé"):
        super().__init__(detail)


class ConflictError(CourierError):
    status_code = status.HTTP_409_CONFLICT


class StorageFailure(CourierError):
    """Échec MongoDB (réseau, permission, quota) : fatal pour l'opération en cours."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class DispatchFailure(CourierError):
    """Échec passerelle SMS : jamais fatal, remonté comme avertissement."""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: str, provider: Optional[str] = None):
        super().__init__(detail)
        self.provider = provider


# ── Raccourcis HTTP (dépendances auth) ────────────────────────────────────────
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
