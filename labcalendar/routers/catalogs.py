"""Read-through access to the lab's catalogs (equipment, chemicals, classes, rooms, presets)."""
import logging

from fastapi import APIRouter, Depends, HTTPException

from labcalendar.dependencies import get_lab_api
from labcalendar.services.lab_api import CATALOG_PATHS, LabApiClient

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/")
def list_catalogs():
    return sorted(CATALOG_PATHS)


@router.get("/{name}")
async def get_catalog(name: str, api: LabApiClient = Depends(get_lab_api)):
    if name not in CATALOG_PATHS:
        raise HTTPException(status_code=404, detail=f"Unknown catalog: {name}")
    return await api.get_catalog(name)
