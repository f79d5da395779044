"""
Ledger Store - JSON persistence for the progress document and the completed set.

Every write replaces the whole document: the JSON is written to a sibling
temp file, flushed and fsynced, then moved over the target with os.replace.
A crash mid-write leaves either the previous document or the new one.
"""

import asyncio
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, List, Optional, Union

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from relay_agent.core.exceptions import LedgerIOFailure
from relay_agent.models import ProgressLedger


async def write_json_atomic(path: Union[str, Path], document: Any) -> None:
    """Replace ``path`` with ``document`` serialized as indented JSON."""
    path = Path(path)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    payload = json.dumps(document, indent=2)

    try:
        if path.parent != Path("."):
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(payload)
            await f.flush()
            await asyncio.to_thread(os.fsync, f.fileno())
        await aiofiles.os.replace(tmp_path, path)
    except OSError as e:
        try:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
        except OSError as cleanup_error:
            logging.debug(f"Could not remove temp ledger file {tmp_path}: {cleanup_error}")
        raise LedgerIOFailure(str(path), e) from e


async def read_json(path: Union[str, Path]) -> Optional[Any]:
    """Return the parsed document, or None if the file does not exist."""
    path = Path(path)
    if not await aiofiles.os.path.exists(path):
        return None
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
        return json.loads(raw)
    except (OSError, json.JSONDecodeError) as e:
        raise LedgerIOFailure(str(path), e) from e


class LedgerStore:
    """File-level access to progress.json and the completed-set document."""

    def __init__(self, progress_path: Union[str, Path], completed_path: Union[str, Path]):
        self.progress_path = Path(progress_path)
        self.completed_path = Path(completed_path)

    async def load(self) -> Optional[ProgressLedger]:
        document = await read_json(self.progress_path)
        if document is None:
            return None
        try:
            return ProgressLedger.model_validate(document)
        except ValidationError as e:
            raise LedgerIOFailure(str(self.progress_path), e) from e

    async def load_completed(self) -> Optional[List[int]]:
        document = await read_json(self.completed_path)
        if document is None:
            return None
        if not isinstance(document, list) or not all(
            isinstance(item, int) and not isinstance(item, bool) for item in document
        ):
            raise LedgerIOFailure(
                str(self.completed_path), ValueError("completed set must be a list of integers")
            )
        return document

    async def save(self, ledger: ProgressLedger) -> None:
        await write_json_atomic(self.progress_path, ledger.to_document())

    async def save_completed(self, completed: List[int]) -> None:
        await write_json_atomic(self.completed_path, list(completed))
