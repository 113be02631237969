from contextlib import contextmanager

from fastapi import HTTPException, Request

from ..blob_store import LocalBlobStore
from ..gateway import ExtractionGateway
from ..usecases.extraction import ExtractionLog
from ..usecases.inventory import InventoryService, NotFound


def get_inventory(req: Request) -> InventoryService:
    return req.app.state.inventory


def get_blobs(req: Request) -> LocalBlobStore:
    return req.app.state.blobs


def get_gateway(req: Request) -> ExtractionGateway:
    return req.app.state.gateway


def get_extraction_log(req: Request) -> ExtractionLog:
    return req.app.state.extraction_log


@contextmanager
def service_errors():
    """ValueError -> 400, NotFound -> 404."""
    try:
        yield
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
