from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.api.deps import require
from storefront.database import get_db
from storefront.identity import MANAGE_INVENTORY, Actor
from storefront.schemas.product import LedgerDiscrepancyOut, LowStockAlertOut
from storefront.services import inventory_service, stock_monitor

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.get("/alerts", response_model=list[LowStockAlertOut])
def list_alerts(unresolved_only: bool = True, db: Session = Depends(get_db)):
    return stock_monitor.list_alerts(db, unresolved_only=unresolved_only)


@router.post("/alerts/{alert_id}/resolve", response_model=LowStockAlertOut)
def resolve_alert(alert_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require(MANAGE_INVENTORY))):
    alert = stock_monitor.resolve_alert(db, alert_id)
    if not alert:
        raise HTTPException(404, "Alert not found")
    return alert


@router.get("/ledger/discrepancies", response_model=list[LedgerDiscrepancyOut])
def ledger_discrepancies(db: Session = Depends(get_db), actor: Actor = Depends(require(MANAGE_INVENTORY))):
    """SKUs whose on-hand quantity no longer matches their last ledger entry."""
    return inventory_service.find_ledger_discrepancies(db)
