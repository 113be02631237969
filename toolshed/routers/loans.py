from fastapi import APIRouter, Depends, Query

from .deps import get_inventory, service_errors
from .. import schemas
from ..usecases.inventory import InventoryService

router = APIRouter(tags=["loans"])


@router.get("/loans", response_model=list[schemas.LoanOut])
def list_loans(
    tool_id: str | None = Query(default=None, alias="toolId"),
    open_only: bool = Query(default=False, alias="openOnly"),
    inv: InventoryService = Depends(get_inventory),
):
    names = inv.tool_names()
    return [schemas.loan_out(l, names) for l in inv.list_loans(tool_id, open_only=open_only)]


@router.post("/loans", status_code=201, response_model=schemas.LoanBatchOut)
def create_loans(body: schemas.LoanCreate, inv: InventoryService = Depends(get_inventory)):
    with service_errors():
        loans = inv.create_loan(
            tool_ids=body.tool_ids,
            days=body.days,
            start_date=body.start_date,
            borrower_name=body.borrower_name,
        )
    names = inv.tool_names()
    return schemas.LoanBatchOut(loans=[schemas.loan_out(l, names) for l in loans])


@router.post("/loans/{loan_id}/extend", response_model=schemas.LoanOut)
def extend_loan(
    loan_id: str,
    body: schemas.LoanExtend | None = None,
    inv: InventoryService = Depends(get_inventory),
):
    days = body.days if body else schemas.LoanExtend().days
    with service_errors():
        loan = inv.extend_loan(loan_id, days)
    return schemas.loan_out(loan, inv.tool_names())


@router.post("/loans/{loan_id}/return", response_model=schemas.LoanOut)
def return_loan(loan_id: str, inv: InventoryService = Depends(get_inventory)):
    with service_errors():
        loan = inv.return_loan(loan_id)
    return schemas.loan_out(loan, inv.tool_names())


@router.post("/sync-loan-status", response_model=schemas.SyncOut)
def sync_loan_status(inv: InventoryService = Depends(get_inventory)):
    updated, active = inv.sync_loan_status()
    return schemas.SyncOut(updated_count=updated, active_loans=active)
