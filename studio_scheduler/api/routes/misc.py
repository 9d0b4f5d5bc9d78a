from fastapi import APIRouter, Depends
from ...api import deps
from ...services.scheduling_service import SchedulingEngine

router = APIRouter(tags=["misc"])


@router.get("/health")
def health_check(engine: SchedulingEngine = Depends(deps.get_engine)):
    return {"status": "ok", "indexed_sessions": len(engine.index)}
