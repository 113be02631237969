from fastapi import APIRouter, Depends, Query

from .deps import get_inventory, service_errors
from .. import schemas
from ..usecases.inventory import InventoryService

router = APIRouter(prefix="/incidents", tags=["incidents"])


@router.get("", response_model=list[schemas.IncidentOut])
def list_incidents(
    tool_id: str | None = Query(default=None, alias="toolId"),
    inv: InventoryService = Depends(get_inventory),
):
    names = inv.tool_names()
    return [schemas.incident_out(i, names) for i in inv.list_incidents(tool_id)]


@router.post("", status_code=201, response_model=schemas.IncidentOut)
def create_incident(body: schemas.IncidentCreate, inv: InventoryService = Depends(get_inventory)):
    with service_errors():
        inc = inv.report_incident(body.tool_id, body.type, body.description, body.timestamp)
    return schemas.incident_out(inc, inv.tool_names())


@router.put("/{incident_id}", response_model=schemas.IncidentOut)
def update_incident(incident_id: str, body: schemas.IncidentPatch, inv: InventoryService = Depends(get_inventory)):
    with service_errors():
        inc = inv.update_incident(incident_id, body.model_dump(exclude_unset=True))
    return schemas.incident_out(inc, inv.tool_names())
