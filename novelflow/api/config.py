"""Global configuration API routes."""

from fastapi import APIRouter

from novelflow.db import config_store
from novelflow.models import GlobalConfig, GlobalConfigUpdate

router = APIRouter()


@router.get("/config")
async def get_config() -> GlobalConfig:
    return await config_store.get()


@router.patch("/config")
async def update_config(update: GlobalConfigUpdate) -> GlobalConfig:
    """Update part of the global configuration."""
    return await config_store.set(update)
