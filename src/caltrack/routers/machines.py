"""
Machine registry API router
"""

from typing import Dict

from fastapi import APIRouter, Depends

from ..dependencies import get_machine_registry
from ..services.machine_registry import MachineRegistry

router = APIRouter(prefix="/api", tags=["machines"])


@router.get("/machines", response_model=Dict[str, float])
async def list_machines(registry: MachineRegistry = Depends(get_machine_registry)):
    """Machine name -> nominal volume."""
    return registry.as_dict()
