"""
Router admin : tableau de bord, destinations, personnel, réconciliation.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Response

from core.dependencies import (
    get_destination_service,
    get_ledger_service,
    get_parcel_service,
    get_staff_service,
    require_admin,
    require_staff,
)
from models.common import StaffRole
from models.destination import Destination, DestinationCreate, DestinationUpdate
from models.staff import Staff, StaffCreate, StaffUpdate
from services.destination_service import DestinationService
from services.ledger_service import LedgerService
from services.parcel_service import ParcelService
from services.staff_service import StaffService

router = APIRouter()


@router.get("/dashboard", summary="Compteurs colis + mon solde")
async def dashboard(
    current_user: dict = Depends(require_staff),
    parcels: ParcelService = Depends(get_parcel_service),
    ledger: LedgerService = Depends(get_ledger_service),
):
    is_admin = current_user["role"] == StaffRole.ADMIN.value
    counts = await parcels.status_counts(None if is_admin else current_user["staff_id"])
    recent = await parcels.list_parcels(
        created_by=None if is_admin else current_user["staff_id"], limit=5,
    )
    return {
        "total_parcels":      counts["total"],
        "pending_parcels":    counts["pending"],
        "in_transit_parcels": counts["in_transit"],
        "delivered_parcels":  counts["delivered"],
        "wallet_balance":     await ledger.balance_of(current_user["staff_id"]),
        "recent_parcels":     recent["parcels"],
    }


@router.post("/reconcile", summary="Rattraper les frais de livraison manquants")
async def reconcile(
    admin: dict = Depends(require_admin),
    parcels: ParcelService = Depends(get_parcel_service),
):
    return await parcels.reconcile_ledger(admin)


# ── Destinations ──────────────────────────────────────────────────────────────
@router.get("/destinations", response_model=list[Destination], summary="Barème des destinations")
async def list_destinations(
    _staff=Depends(require_staff),
    destinations: DestinationService = Depends(get_destination_service),
):
    return await destinations.list()


@router.post("/destinations", response_model=Destination, status_code=201, summary="Ajouter une destination")
async def create_destination(
    body: DestinationCreate,
    _admin=Depends(require_admin),
    destinations: DestinationService = Depends(get_destination_service),
):
    return await destinations.create(body)


@router.put("/destinations/{destination_id}", response_model=Destination, summary="Modifier une destination")
async def update_destination(
    destination_id: str,
    body: DestinationUpdate,
    _admin=Depends(require_admin),
    destinations: DestinationService = Depends(get_destination_service),
):
    return await destinations.update(destination_id, body)


@router.delete("/destinations/{destination_id}", status_code=204, summary="Supprimer une destination")
async def delete_destination(
    destination_id: str,
    _admin=Depends(require_admin),
    destinations: DestinationService = Depends(get_destination_service),
):
    await destinations.delete(destination_id)
    return Response(status_code=204)


# ── Personnel ─────────────────────────────────────────────────────────────────
@router.get("/staff", response_model=list[Staff], summary="Liste du personnel")
async def list_staff(
    role: Optional[StaffRole] = None,
    _admin=Depends(require_admin),
    staff_service: StaffService = Depends(get_staff_service),
):
    return await staff_service.list(role.value if role else None)


@router.post("/staff", response_model=Staff, status_code=201, summary="Enregistrer un membre")
async def create_staff(
    body: StaffCreate,
    _admin=Depends(require_admin),
    staff_service: StaffService = Depends(get_staff_service),
):
    return await staff_service.create(body)


@router.put("/staff/{staff_id}", response_model=Staff, summary="Modifier un membre (nom, téléphone, rôle)")
async def update_staff(
    staff_id: str,
    body: StaffUpdate,
    _admin=Depends(require_admin),
    staff_service: StaffService = Depends(get_staff_service),
):
    return await staff_service.update(staff_id, body)


@router.delete("/staff/{staff_id}", status_code=204, summary="Supprimer un membre")
async def delete_staff(
    staff_id: str,
    _admin=Depends(require_admin),
    staff_service: StaffService = Depends(get_staff_service),
):
    await staff_service.delete(staff_id)
    return Response(status_code=204)
