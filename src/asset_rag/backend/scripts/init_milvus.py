# src/asset_rag/backend/scripts/init_milvus.py

"""
[职责] 初始化资产向量 collection（建表/索引/加载），提供可幂等的 CLI 入口。
[边界] 不写入向量（ingestion 侧负责）；不访问 DB。
[上游关系] 本地开发/CI/部署脚本调用；依赖 kb/client 与 kb/schema 的契约。
[下游关系] SimilarityIndexClient 直接检索已初始化的 collection；启动期维度校验读取其 schema。
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from typing import Any, Dict, Optional, Sequence

from asset_rag.backend.kb.client import MilvusClient
from asset_rag.backend.kb.schema import build_collection_spec
from asset_rag.config import settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Initialize the asset embedding collection in Milvus.")
    parser.add_argument("--collection", default=settings.MILVUS_COLLECTION)
    parser.add_argument("--embed-dim", type=int, default=int(settings.EMBED_DIM))  # docstring: 须与 EMBED_DIM 一致
    parser.add_argument("--metric-type", default=settings.MILVUS_METRIC_TYPE, choices=["IP", "L2", "COSINE"])
    parser.add_argument("--index-type", default="HNSW", choices=["HNSW", "IVF_FLAT", "IVF_SQ8", "AUTOINDEX"])
    parser.add_argument("--drop", action="store_true")  # docstring: 先 drop 再 create
    parser.add_argument("--json", action="store_true")
    return parser


async def _run_async(
    *,
    collection: str,
    embed_dim: int,
    metric_type: str,
    index_type: str,
    drop: bool,
) -> Dict[str, Any]:
    """
    [职责] healthcheck -> create（含索引与 load）-> 回读维度。
    [边界] 异常写入 result.error，不上抛。
    """
    start_ms = time.perf_counter() * 1000.0
    client = MilvusClient.from_env()
    result: Dict[str, Any] = {
        "ok": True,
        "collection": collection,
        "embed_dim": int(embed_dim),
        "metric_type": metric_type,
        "index_type": index_type,
        "existed": False,
        "created": False,
        "index_dim": None,
        "error": None,
    }
    try:
        await client.healthcheck()
        existed = await client.has_collection(collection)
        result["existed"] = bool(existed)
        spec = build_collection_spec(
            name=collection,
            embed_dim=int(embed_dim),
            metric_type=metric_type,
            index_type=index_type,
        )
        await client.create_collection(spec, drop_if_exists=drop)
        result["created"] = (not existed) or drop
        result["index_dim"] = await client.get_vector_dim(collection)
    except Exception as exc:
        result["ok"] = False
        result["error"] = f"{exc.__class__.__name__}: {exc}"
    finally:
        client.disconnect()
        result["duration_ms"] = round(time.perf_counter() * 1000.0 - start_ms, 2)
    return result


def _print_summary(*, result: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(result, ensure_ascii=True, default=str))
        return
    status = "ok" if result.get("ok") else "failed"
    print(f"[init_milvus] status={status} collection={result.get('collection')}")
    print(
        f"[init_milvus] embed_dim={result.get('embed_dim')} index_dim={result.get('index_dim')} "
        f"metric_type={result.get('metric_type')} index_type={result.get('index_type')}"
    )
    print(f"[init_milvus] existed={result.get('existed')} created={result.get('created')}")
    if result.get("error"):
        print(f"[init_milvus] error={result.get('error')}")
    print(f"[init_milvus] duration_ms={result.get('duration_ms')}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    result = asyncio.run(
        _run_async(
            collection=str(args.collection).strip(),
            embed_dim=args.embed_dim,
            metric_type=args.metric_type,
            index_type=args.index_type,
            drop=bool(args.drop),
        )
    )
    _print_summary(result=result, as_json=bool(args.json))
    return 0 if result.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
