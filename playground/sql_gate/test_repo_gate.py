# playground/sql_gate/test_repo_gate.py

"""
[职责] repo gate：验证 ChatMessageRepo 追加/查询/删除与 AssetRepo 的按状态计数。
[边界] 只走 repo 层；session 由 conftest 提供（临时 sqlite）。
[上游关系] backend/db/repo/*、backend/db/models/*。
[下游关系] ConversationStore 与 eligible 计数标签。
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from asset_rag.backend.db.models import AssetModel
from asset_rag.backend.db.repo.asset_repo import AssetRepo
from asset_rag.backend.db.repo.chat_message_repo import ChatMessageRepo


pytestmark = pytest.mark.sql_gate


@pytest.mark.asyncio
async def test_chat_message_append_list_delete(session: AsyncSession) -> None:
    repo = ChatMessageRepo(session)

    first = await repo.append(user_id="u-1", role="user", content="need autumn imagery", request_id="r-1")
    await repo.append(
        user_id="u-1",
        role="assistant",
        content="Here are two options.",
        assets=[{"id": "a", "preview_path": "p/a.jpg"}],
    )
    await repo.append(user_id="u-2", role="user", content="other caller")
    await session.commit()

    assert first.id  # docstring: flush 后已生成主键
    rows = await repo.list_for_user("u-1")
    assert len(rows) == 2
    assert {r.role for r in rows} == {"user", "assistant"}
    assert [r for r in rows if r.role == "assistant"][0].assets == [{"id": "a", "preview_path": "p/a.jpg"}]
    assert len(await repo.list_for_user("u-1", limit=1)) == 1

    deleted = await repo.delete_for_user("u-1")
    await session.commit()
    assert deleted == 2
    assert await repo.list_for_user("u-1") == []
    assert len(await repo.list_for_user("u-2")) == 1


@pytest.mark.asyncio
async def test_chat_message_rejects_unknown_role(session: AsyncSession) -> None:
    with pytest.raises(ValueError):
        await ChatMessageRepo(session).append(user_id="u-1", role="system", content="x")


@pytest.mark.asyncio
async def test_asset_count_by_status(session: AsyncSession) -> None:
    session.add_all(
        [
            AssetModel(status="approved", preview_path="p/1.jpg"),
            AssetModel(status="approved", preview_path="p/2.jpg"),
            AssetModel(status="pending", preview_path="p/3.jpg"),
        ]
    )
    await session.commit()

    repo = AssetRepo(session)
    assert await repo.count_by_status("approved") == 2
    assert await repo.count_by_status("pending") == 1
    assert await repo.count_by_status("rejected") == 0
