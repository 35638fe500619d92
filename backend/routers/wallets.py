"""
Router wallets : solde personnel et historique des écritures.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from core.dependencies import get_ledger_service, require_staff
from services.ledger_service import LedgerService

router = APIRouter()


@router.get("/me", summary="Mon wallet")
async def get_my_wallet(
    current_user: dict = Depends(require_staff),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.get_wallet(current_user["staff_id"])


@router.get("/me/transactions", summary="Historique des écritures")
async def get_my_transactions(
    type: Optional[str] = None,
    period: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
    current_user: dict = Depends(require_staff),
    ledger: LedgerService = Depends(get_ledger_service),
):
    result = await ledger.list_entries(
        staff_id=current_user["staff_id"], entry_type=type, period=period, skip=skip, limit=limit,
    )
    return {"transactions": result["entries"], "total": result["total"], "totals": result["totals"]}
