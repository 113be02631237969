import json
import os

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as FormFile

from .deps import get_blobs, get_extraction_log, get_gateway, get_inventory, service_errors
from .. import config, schemas
from ..blob_store import LocalBlobStore
from ..gateway import ExtractionGateway
from ..usecases.extraction import ExtractionLog, extract_draft
from ..usecases.inventory import InventoryService

router = APIRouter(prefix="/tools", tags=["tools"])


async def _read_image(image: FormFile) -> tuple[bytes, str]:
    mime = image.content_type or "application/octet-stream"
    if mime not in config.ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail=f"unsupported_image_type:{mime}")
    data = await image.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty_image")
    if len(data) > config.MAX_IMAGE_BYTES:
        raise HTTPException(status_code=400, detail="image_too_large")
    return data, mime


def _suffix(filename: str | None) -> str:
    ext = os.path.splitext(filename or "")[1]
    return ext or ".jpg"


def _temp_id(temp_name: str) -> str:
    return os.path.splitext(temp_name)[0]


@router.get("")
def list_tools(
    id: str | None = Query(default=None),
    available: bool | None = Query(default=None),
    category: str | None = Query(default=None),
    inv: InventoryService = Depends(get_inventory),
):
    if id is not None:
        with service_errors():
            return schemas.tool_out(inv.get_tool(id))
    return [schemas.tool_out(t) for t in inv.list_tools(available=available, category=category)]


@router.post("", status_code=201, response_model=schemas.ToolOut)
async def register_tool(
    request: Request,
    inv: InventoryService = Depends(get_inventory),
    blobs: LocalBlobStore = Depends(get_blobs),
):
    """Accepts a JSON body, or multipart with a ``data`` JSON field and an optional ``image``."""
    ctype = request.headers.get("content-type", "")
    image = None
    if ctype.startswith("multipart/form-data"):
        form = await request.form()
        raw = form.get("data")
        if isinstance(raw, str):
            try:
                payload = json.loads(raw)
            except ValueError:
                raise HTTPException(status_code=400, detail="invalid_json_data")
        else:
            payload = {k: v for k, v in form.items() if isinstance(v, str)}
        img = form.get("image")
        if isinstance(img, FormFile):
            image = img
    else:
        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid_json_body")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="body_must_be_object")
    try:
        body = schemas.ToolCreate.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=jsonable_encoder(e.errors(include_url=False, include_context=False)))

    if image is not None:
        data, _ = await _read_image(image)
        body.temp_image_name = await run_in_threadpool(blobs.put, data, _suffix(image.filename), "upload")

    with service_errors():
        tool = await run_in_threadpool(inv.register_tool, body)
    return schemas.tool_out(tool)


@router.post("/upload-temp", response_model=schemas.TempImageOut)
async def upload_temp(
    image: UploadFile = File(...),
    blobs: LocalBlobStore = Depends(get_blobs),
):
    data, _ = await _read_image(image)
    name = await run_in_threadpool(blobs.put, data, _suffix(image.filename), "temp")
    return schemas.TempImageOut(temp_image_id=_temp_id(name), temp_image_name=name)


@router.post("/upload-only", response_model=schemas.TempImageOut)
async def upload_only(
    image: UploadFile = File(...),
    blobs: LocalBlobStore = Depends(get_blobs),
):
    """Manual-registration photo; same temp namespace as ``/upload-temp``."""
    data, _ = await _read_image(image)
    name = await run_in_threadpool(blobs.put, data, _suffix(image.filename), "manual")
    return schemas.TempImageOut(
        temp_image_id=_temp_id(name),
        temp_image_name=name,
        message="Image uploaded successfully",
    )


@router.post("/extract")
async def extract_tool(
    image: UploadFile = File(...),
    blobs: LocalBlobStore = Depends(get_blobs),
    gateway: ExtractionGateway = Depends(get_gateway),
    log: ExtractionLog = Depends(get_extraction_log),
):
    """Photo -> draft registration fields. Gateway faults degrade to a
    zero-confidence draft carrying an ``error`` field."""
    data, mime = await _read_image(image)
    name = await run_in_threadpool(blobs.put, data, _suffix(image.filename), "temp")

    result = await extract_draft(gateway, data, mime, config.EXTRACT_TIMEOUT_SECONDS)
    result["tempImageId"] = _temp_id(name)
    result["tempImageName"] = name

    await run_in_threadpool(log.append, name, len(data), mime, result)
    return result


@router.get("/sample", response_model=list[schemas.ToolOut])
def sample_tools(inv: InventoryService = Depends(get_inventory)):
    """The bundled first-start dataset, as shipped."""
    with service_errors():
        return [schemas.tool_out(t) for t in inv.sample_tools()]


@router.post("/reload", response_model=schemas.ReloadOut)
def reload_tools(inv: InventoryService = Depends(get_inventory)):
    keys = inv.reload()
    return schemas.ReloadOut(reloaded=len(keys), keys=keys[:5])


@router.get("/{tool_id}", response_model=schemas.ToolOut)
def get_tool(tool_id: str, inv: InventoryService = Depends(get_inventory)):
    with service_errors():
        return schemas.tool_out(inv.get_tool(tool_id))


@router.put("/{tool_id}", response_model=schemas.ToolOut)
def update_tool(tool_id: str, body: schemas.ToolPatch, inv: InventoryService = Depends(get_inventory)):
    with service_errors():
        tool = inv.update_tool(tool_id, body.model_dump(exclude_unset=True))
    return schemas.tool_out(tool)


@router.delete("/{tool_id}", response_model=schemas.DeleteOut)
def delete_tool(tool_id: str, inv: InventoryService = Depends(get_inventory)):
    with service_errors():
        tool = inv.delete_tool(tool_id)
    return schemas.DeleteOut(
        message=f"tool {tool.name} (ID: {tool_id}) deleted",
        deleted_tool=schemas.tool_out(tool),
    )


@router.post("/{tool_id}/restore", response_model=schemas.ToolOut)
def restore_tool(tool_id: str, inv: InventoryService = Depends(get_inventory)):
    with service_errors():
        return schemas.tool_out(inv.restore_tool(tool_id))


@router.post("/{tool_id}/incident", status_code=201, response_model=schemas.IncidentOut)
def report_tool_incident(
    tool_id: str,
    body: schemas.ToolIncidentCreate,
    inv: InventoryService = Depends(get_inventory),
):
    with service_errors():
        inc = inv.report_incident(tool_id, body.type, body.description, body.timestamp)
    return schemas.incident_out(inc, inv.tool_names())
