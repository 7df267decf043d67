"""
Versioned schema for persisted Progress blobs.

Version 2 is the current explicit shape. Unversioned blobs are the original
per-language crawler state (``allComicIds`` / ``processedIds`` /
``lastScanTime`` / ``<lang>_total``) and are migrated on read.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from comic_sync.core.models import PROGRESS_SCHEMA_VERSION, Progress, normalize_ids
from comic_sync.utils.time import iso_from_epoch_ms


class ProgressSchemaV2(BaseModel):
    """Pydantic schema for progress blob v2."""
    schema_version: Literal[2]
    source_key: str
    discovered_ids: List[int] = Field(default_factory=list)
    backfill_cursor: int = Field(1, ge=1)
    backfill_complete: bool = False
    last_discovery_signature: Optional[str] = None
    total_processed: int = Field(0, ge=0)
    last_run_time: Optional[str] = None
    last_run_id: Optional[str] = None
    last_plan: Optional[str] = None
    version: int = Field(0, ge=0)


class LegacyProgressV1(BaseModel):
    """Unversioned state blob written by the original crawler workflows."""
    model_config = ConfigDict(extra="allow")

    allComicIds: List[int] = Field(default_factory=list)
    processedIds: List[int] = Field(default_factory=list)
    lastScanTime: Optional[int] = None


def encode_progress(progress: Progress) -> Dict[str, Any]:
    return {
        "schema_version": PROGRESS_SCHEMA_VERSION,
        "source_key": progress.source_key,
        "discovered_ids": list(progress.discovered_ids),
        "backfill_cursor": progress.backfill_cursor,
        "backfill_complete": progress.backfill_complete,
        "last_discovery_signature": progress.last_discovery_signature,
        "total_processed": progress.total_processed,
        "last_run_time": progress.last_run_time,
        "last_run_id": progress.last_run_id,
        "last_plan": progress.last_plan,
        "version": progress.version,
    }


def decode_progress(source_key: str, payload: Dict[str, Any]) -> Progress:
    """Validate a stored blob and turn it into a Progress, migrating old shapes."""
    try:
        if "schema_version" not in payload:
            return _migrate_v1(source_key, LegacyProgressV1(**payload))

        version = payload.get("schema_version")
        if version != PROGRESS_SCHEMA_VERSION:
            raise ValueError(f"Unsupported progress schema_version: {version}")

        model = ProgressSchemaV2(**payload)
    except ValidationError as e:
        raise ValueError(f"Progress schema validation failed for {source_key}: {e}") from e

    return Progress(
        source_key=model.source_key,
        discovered_ids=normalize_ids(model.discovered_ids),
        backfill_cursor=model.backfill_cursor,
        backfill_complete=model.backfill_complete,
        last_discovery_signature=model.last_discovery_signature,
        total_processed=model.total_processed,
        last_run_time=model.last_run_time,
        last_run_id=model.last_run_id,
        last_plan=model.last_plan,
        version=model.version,
    )


def _migrate_v1(source_key: str, legacy: LegacyProgressV1) -> Progress:
    discovered = normalize_ids(legacy.allComicIds)
    processed = normalize_ids(legacy.processedIds)

    # "<lang>_total" held the listing fingerprint
    total = None
    for key, value in (legacy.model_extra or {}).items():
        if key.endswith("_total") and value is not None:
            total = value
            break

    last_run_time = iso_from_epoch_ms(legacy.lastScanTime) if legacy.lastScanTime else None

    return Progress(
        source_key=source_key,
        discovered_ids=discovered,
        backfill_cursor=(processed[-1] + 1) if processed else 1,
        backfill_complete=bool(discovered) and len(processed) >= len(discovered),
        last_discovery_signature=f"count:{total}" if total is not None else None,
        total_processed=len(processed),
        last_run_time=last_run_time,
    )
