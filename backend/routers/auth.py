"""
Router auth : échange de l'ID token Firebase (login téléphone/OTP) contre un JWT.
"""
from fastapi import APIRouter, Depends, Request

from config import settings
from core.dependencies import get_current_user, get_staff_service, limiter
from core.exceptions import credentials_exception
from core.security import create_access_token, verify_firebase_id_token
from models.staff import SessionRequest, Staff, TokenResponse
from services.staff_service import StaffService

router = APIRouter()


@router.post("/session", response_model=TokenResponse, summary="ID token Firebase → JWT")
@limiter.limit(settings.AUTH_RATE_LIMIT)
async def open_session(
    request: Request,
    body: SessionRequest,
    staff_service: StaffService = Depends(get_staff_service),
):
    identity = verify_firebase_id_token(body.id_token)
    if not identity:
        raise credentials_exception()
    uid, phone = identity

    # Trouver ou créer la fiche personnel
    staff = await staff_service.get_or_create_from_identity(uid, phone)

    token_data = {"sub": staff["staff_id"], "role": staff["role"]}
    return TokenResponse(
        access_token=create_access_token(token_data),
        staff=Staff(**staff),
    )


@router.get("/me", response_model=Staff, summary="Profil courant")
async def me(current_user: dict = Depends(get_current_user)):
    return Staff(**current_user)
