# src/asset_rag/backend/scripts/init_db.py

"""
[职责] 初始化数据库结构（create_all / 可选 drop），提供可幂等的 CLI 入口。
[边界] 不写业务数据；asset 表由 ingestion 侧填充。
[上游关系] 本地开发/CI/部署脚本调用；依赖 db.engine 的 init_db/drop_db。
[下游关系] chat_message / asset 表供 ConversationStore 与计数阶段使用。
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from typing import Any, Dict, Optional, Sequence

from asset_rag.backend.db.engine import create_engine, drop_db, init_db


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Initialize database schema (create_all).")
    parser.add_argument("--db-url", dest="db_url", default=None)  # docstring: 显式 DB 连接串
    parser.add_argument("--drop", action="store_true")  # docstring: 先 drop 再 create
    parser.add_argument("--json", action="store_true")
    return parser


async def _run_async(*, db_url: Optional[str], drop: bool) -> Dict[str, Any]:
    start_ms = time.perf_counter() * 1000.0
    engine = create_engine(url=db_url)
    result: Dict[str, Any] = {"ok": True, "db_url": str(engine.url.render_as_string(hide_password=True))}
    try:
        if drop:
            await drop_db(engine=engine)
        await init_db(engine=engine)
        result["dropped"] = bool(drop)
    except Exception as exc:
        result["ok"] = False
        result["error"] = f"{exc.__class__.__name__}: {exc}"
    finally:
        await engine.dispose()
        result["duration_ms"] = round(time.perf_counter() * 1000.0 - start_ms, 2)
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    result = asyncio.run(_run_async(db_url=args.db_url, drop=bool(args.drop)))
    if args.json:
        print(json.dumps(result, ensure_ascii=True, default=str))
    else:
        print(f"[init_db] status={'ok' if result['ok'] else 'failed'} db_url={result['db_url']}")
        if result.get("error"):
            print(f"[init_db] error={result['error']}")
        print(f"[init_db] duration_ms={result['duration_ms']}")
    return 0 if result.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
