from __future__ import annotations
from fastapi import APIRouter, Depends

from compass import __version__
from compass.core.config import get_settings
from compass.interfaces.http.deps.services import Services, get_services
from compass.schemas.common import HealthResponse

router = APIRouter()

@router.get("/", response_model=HealthResponse)
def health(services: Services = Depends(get_services)):
    settings = get_settings()
    return HealthResponse(
        ok=True,
        app=settings.APP_NAME,
        env=settings.ENV,
        version=__version__,
        flows=[t.value for t in services.repository.available_types()],
    )

@router.get("/healthz")
def healthz():
    return {"ok": True}
