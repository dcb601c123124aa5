"""Step journal persistence.

Every completed orchestration step is stored once, with a fingerprint
of its input, so a replay can return the recorded result instead of
performing the step again.
"""

import hashlib
import json
from datetime import datetime
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from oncall.models.orchestration import JournalEntry, StepKind


def canonical_json(value: Any) -> str:
    """Serialize a value to key-sorted, whitespace-free JSON."""
    return json.dumps(
        to_jsonable_python(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def hash_payload(value: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of a value."""
    return hashlib.sha256(canonical_json(value).encode()).hexdigest()


async def load_history(db: AsyncSession, instance_id: str) -> list[JournalEntry]:
    """Load the journal of an instance in step order.

    Args:
        db: Database session.
        instance_id: Orchestration instance id.

    Returns:
        Journal entries ordered by step index.
    """
    result = await db.execute(
        select(JournalEntry)
        .where(JournalEntry.instance_id == instance_id)
        .order_by(JournalEntry.step_index)
    )
    return list(result.scalars().all())


async def append_entry(
    db: AsyncSession,
    *,
    instance_id: str,
    step_index: int,
    step_kind: StepKind,
    name: str,
    input: Any,
    recorded_at: datetime,
    result: Any = None,
    error: str | None = None,
) -> JournalEntry:
    """Record a completed step and commit it.

    The commit happens before the orchestration continues, so step N is
    durable before step N+1 starts.
    """
    payload = to_jsonable_python(input)
    entry = JournalEntry(
        instance_id=instance_id,
        step_index=step_index,
        step_kind=step_kind,
        name=name,
        input_hash=hash_payload(payload),
        input=payload,
        result=to_jsonable_python(result),
        error=error,
        recorded_at=recorded_at,
    )
    db.add(entry)
    await db.commit()
    return entry


async def purge_journal(db: AsyncSession, instance_id: str) -> int:
    """Delete every journal entry of an instance. Does not commit.

    Returns:
        Number of entries deleted.
    """
    result = await db.execute(
        delete(JournalEntry).where(JournalEntry.instance_id == instance_id)
    )
    return result.rowcount or 0
