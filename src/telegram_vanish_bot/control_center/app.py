from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from telegram_vanish_bot.domain.retention import RetentionPolicy
from telegram_vanish_bot.services.error_codes import ERROR_CATALOG
from telegram_vanish_bot.services.retention_service import RetentionService
from telegram_vanish_bot.util import format_duration


class PolicyView(BaseModel):
    channel_id: str
    guild_id: str
    ttl_seconds: int
    ttl: str
    messages_deleted: int
    last_deletion_at: Optional[str] = None
    created_at: str
    updated_at: str


def _policy_view(policy: RetentionPolicy) -> PolicyView:
    return PolicyView(
        channel_id=policy.channel_id,
        guild_id=policy.guild_id,
        ttl_seconds=policy.ttl_seconds,
        ttl=format_duration(policy.ttl_seconds),
        messages_deleted=policy.messages_deleted,
        last_deletion_at=policy.last_deletion_at.isoformat() if policy.last_deletion_at else None,
        created_at=policy.created_at.isoformat(),
        updated_at=policy.updated_at.isoformat(),
    )


def create_app(service: RetentionService, lifespan: Optional[Any] = None) -> FastAPI:
    app = FastAPI(title="Telegram Vanish Bot Control Center", lifespan=lifespan)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        status = service.scheduler.status()
        return {
            "status": "ok",
            "scheduler_running": status["running"],
            "sweep_in_progress": status["in_progress"],
            "policies": len(service.list_policies()),
        }

    @app.get("/api/policies", response_model=List[PolicyView])
    async def list_policies(guild_id: Optional[str] = None) -> List[PolicyView]:
        return [_policy_view(p) for p in service.list_policies(guild_id)]

    @app.get("/api/policies/{channel_id}", response_model=PolicyView)
    async def get_policy(channel_id: str) -> PolicyView:
        policy = service.status(channel_id)
        if policy is None:
            raise HTTPException(status_code=404, detail="No retention policy for this channel")
        return _policy_view(policy)

    @app.get("/api/sweeps/status")
    async def sweep_status() -> Dict[str, Any]:
        return service.scheduler.status()

    @app.post("/api/sweeps/run")
    async def run_sweep() -> Dict[str, Any]:
        summary = await service.run_sweep_now()
        if summary is None:
            return {"skipped": True, "reason": "sweep in progress elsewhere or failed"}
        return {"skipped": False, "summary": summary.as_dict()}

    @app.get("/api/error-codes")
    async def error_codes() -> List[Dict[str, Any]]:
        return [asdict(entry) for entry in ERROR_CATALOG]

    return app
