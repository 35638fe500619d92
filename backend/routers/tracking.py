"""
Router tracking : suivi public par code (sans authentification).
"""
from fastapi import APIRouter, Depends

from core.dependencies import get_parcel_service
from core.utils import mask_phone
from services.parcel_service import ParcelService

router = APIRouter()

PUBLIC_FIELDS = ("tracking_code", "status", "recipient_name", "created_at", "updated_at")


@router.get("/{tracking_code}", summary="Statut public d'un colis")
async def track_parcel(
    tracking_code: str,
    parcels: ParcelService = Depends(get_parcel_service),
):
    parcel = await parcels.get_by_tracking_code(tracking_code)
    public = {k: parcel.get(k) for k in PUBLIC_FIELDS}
    public["recipient_phone"] = mask_phone(parcel.get("recipient_phone", ""))

    # On retire actor_id des événements publics
    timeline = await parcels.get_timeline(parcel["parcel_id"])
    public["events"] = [
        {k: v for k, v in evt.items() if k not in ("actor_id", "actor_role", "parcel_id")}
        for evt in timeline
    ]
    return public
