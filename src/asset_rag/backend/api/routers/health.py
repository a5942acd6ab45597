# src/asset_rag/backend/api/routers/health.py

"""
[职责] Health Router：提供服务健康检查（DB/Milvus）。
[边界] 不触发 pipeline；仅做轻量探测；任一依赖异常时返回 degraded（HTTP 200）。
[上游关系] 运维/监控系统调用。
[下游关系] DB session 与 MilvusClient.healthcheck。
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from asset_rag.backend.api.deps import get_milvus_repo, get_session
from asset_rag.backend.kb.repo import MilvusRepo


router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check(
    session: AsyncSession = Depends(get_session),
    milvus_repo: MilvusRepo = Depends(get_milvus_repo),
) -> Dict[str, Any]:
    db_status: Dict[str, Any] = {"ok": True}
    milvus_status: Dict[str, Any] = {"ok": True}

    try:
        await session.execute(text("SELECT 1"))  # docstring: DB ping（最小读）
    except Exception as exc:
        db_status = {"ok": False, "error": f"{exc.__class__.__name__}: {exc}"}

    try:
        await milvus_repo.client.healthcheck()
    except Exception as exc:
        milvus_status = {"ok": False, "error": f"{exc.__class__.__name__}: {exc}"}

    status = "ok" if db_status["ok"] and milvus_status["ok"] else "degraded"
    return {"status": status, "db": db_status, "milvus": milvus_status, "version": {"api": "v1"}}
