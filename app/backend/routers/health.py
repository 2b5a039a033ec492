from __future__ import annotations

from fastapi import APIRouter, HTTPException

from app.backend import config, constants
from app.backend.errors import ConfigurationError
from app.backend.schemas import HealthData


router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthData)
def health():
	try:
		mode = config.provider_mode()
		effective = config.resolved_provider_mode()
	except ConfigurationError as exc:
		raise HTTPException(status_code=exc.status_code, detail={"code": exc.code, "message": exc.message}) from exc
	return {
		"ok": True,
		"app": constants.APP_NAME,
		"version": constants.APP_VERSION,
		"provider_mode": mode,
		"effective_provider_mode": effective,
	}
