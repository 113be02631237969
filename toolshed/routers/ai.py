from fastapi import APIRouter, Depends

from .deps import get_extraction_log, get_gateway
from ..gateway import ExtractionGateway
from ..usecases.extraction import ExtractionLog

router = APIRouter(prefix="/ai", tags=["ai"])


@router.get("/status")
def ai_status(gateway: ExtractionGateway = Depends(get_gateway)):
    ready = gateway.configured
    return {
        "status": "ready" if ready else "no_key",
        "message": "extraction API key configured" if ready else "extraction API key required",
        "model": gateway.model_name,
    }


@router.get("/log")
def ai_log(log: ExtractionLog = Depends(get_extraction_log)):
    return log.entries()
