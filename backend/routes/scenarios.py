"""Scenario configuration routes (public, read-only)."""
from fastapi import APIRouter
from services.scenario_registry import scenario_registry
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/scenarios", tags=["scenarios"])


@router.get("")
async def list_scenarios():
    """All invoice scenarios with labels, fields and form defaults."""
    return {"scenarios": scenario_registry.get_all()}


@router.get("/{scenario_id}")
async def get_scenario(scenario_id: str):
    """One scenario; unknown ids resolve to the custom scenario."""
    return scenario_registry.get_config(scenario_id)
