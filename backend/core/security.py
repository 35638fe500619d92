import logging
import os
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple

import firebase_admin
from firebase_admin import auth as firebase_auth, credentials
from jose import jwt, JWTError

from config import settings

logger = logging.getLogger(__name__)

# ── JWT ───────────────────────────────────────────────────────────────────────
ALGORITHM = "HS256"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Lève JWTError si invalide ou expiré."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])


def verify_access_token(token: str) -> Optional[dict]:
    try:
        payload = decode_token(token)
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None


# ── Firebase (login téléphone/OTP côté client) ────────────────────────────────
def _firebase_app() -> firebase_admin.App:
    """Initialise Firebase Admin au premier appel."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    cred_path = settings.FIREBASE_CREDENTIALS_FILE
    if cred_path and os.path.exists(cred_path):
        return firebase_admin.initialize_app(credentials.Certificate(cred_path), options)
    # Credentials par défaut (GOOGLE_APPLICATION_CREDENTIALS / environnement cloud)
    return firebase_admin.initialize_app(options=options)


def verify_firebase_id_token(id_token: str) -> Optional[Tuple[str, str]]:
    """
    Vérifie l'ID token issu du login téléphone Firebase.
    Retourne (uid, téléphone vérifié) ou None si le token est invalide
    ou ne porte pas de numéro.
    """
    try:
        decoded = firebase_auth.verify_id_token(id_token, app=_firebase_app())
    except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
            firebase_auth.RevokedIdTokenError, firebase_auth.CertificateFetchError) as e:
        logger.warning(f"ID token Firebase refusé : {e}")
        return None

    phone = decoded.get("phone_number")
    if not phone:
        logger.warning(f"ID token Firebase sans numéro (uid={decoded.get('uid')})")
        return None
    return decoded["uid"], phone
