"""
Router parcels : création, suivi et transitions de la machine d'états.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from core.dependencies import get_notification_service, get_parcel_service, require_staff
from models.common import StaffRole
from models.parcel import CustomSms, ParcelCreate, ParcelResult, StatusUpdate
from services.notification_service import NotificationService
from services.parcel_service import ParcelService

router = APIRouter()


def _is_admin(user: dict) -> bool:
    return user.get("role") == StaffRole.ADMIN.value


@router.post("", response_model=ParcelResult, status_code=201, summary="Créer un colis")
async def create_parcel_endpoint(
    body: ParcelCreate,
    current_user: dict = Depends(require_staff),
    parcels: ParcelService = Depends(get_parcel_service),
):
    return await parcels.create_parcel(body, current_user)


@router.get("", summary="Colis (les miens ; tous pour un admin)")
async def list_parcels(
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
    current_user: dict = Depends(require_staff),
    parcels: ParcelService = Depends(get_parcel_service),
):
    created_by = None if _is_admin(current_user) else current_user["staff_id"]
    return await parcels.list_parcels(created_by=created_by, status=status, skip=skip, limit=limit)


@router.get("/{parcel_id}", summary="Détail + timeline")
async def get_parcel(
    parcel_id: str,
    current_user: dict = Depends(require_staff),
    parcels: ParcelService = Depends(get_parcel_service),
):
    parcel = await parcels.get_parcel(parcel_id)
    timeline = await parcels.get_timeline(parcel_id)
    return {"parcel": parcel, "timeline": timeline}


@router.put("/{parcel_id}/status", response_model=ParcelResult, summary="Changer le statut")
async def update_status(
    parcel_id: str,
    body: StatusUpdate,
    current_user: dict = Depends(require_staff),
    parcels: ParcelService = Depends(get_parcel_service),
):
    return await parcels.transition_status(parcel_id, body.status, current_user)


@router.post("/{parcel_id}/sms", summary="Envoyer un SMS libre au destinataire")
async def send_custom_sms(
    parcel_id: str,
    body: CustomSms,
    current_user: dict = Depends(require_staff),
    parcels: ParcelService = Depends(get_parcel_service),
    notifications: NotificationService = Depends(get_notification_service),
):
    return await parcels.send_custom_sms(parcel_id, body.message, current_user, notifications)
