"""
Router ledger : vue globale et écritures manuelles (admin).
"""
from typing import Optional

from fastapi import APIRouter, Depends

from core.dependencies import get_ledger_service, require_admin
from models.ledger import LedgerEntry, LedgerEntryCreate
from services.ledger_service import LedgerService

router = APIRouter()


@router.get("", summary="Toutes les écritures, filtrables")
async def list_ledger(
    type: Optional[str] = None,
    staff_id: Optional[str] = None,
    period: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    _admin=Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
):
    result = await ledger.list_entries(
        staff_id=staff_id, entry_type=type, period=period, skip=skip, limit=limit,
    )
    entries = await ledger.with_staff_names(result["entries"])
    return {"entries": entries, "total": result["total"], "totals": result["totals"]}


@router.post("", response_model=LedgerEntry, status_code=201, summary="Passer une écriture")
async def append_entry(
    body: LedgerEntryCreate,
    admin: dict = Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.append_entry(body, admin)


@router.get("/wallets/{staff_id}", summary="Wallet d'un membre (contrôle de cohérence)")
async def get_staff_wallet(
    staff_id: str,
    _admin=Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.get_wallet(staff_id)
