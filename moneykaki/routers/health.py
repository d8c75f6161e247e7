from fastapi import APIRouter

from moneykaki.services.scheduler import challenge_scheduler

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"ok": True, "scheduler_running": challenge_scheduler.is_running}
