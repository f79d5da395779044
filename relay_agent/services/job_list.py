"""
Static job list loading.

The job list is read once per run from a JSON array and never mutated.
"""

import json
import logging
from pathlib import Path
from typing import List, Union

import aiofiles
from pydantic import TypeAdapter, ValidationError

from relay_agent.core.exceptions import JobListError
from relay_agent.models import Job

_JOB_LIST_ADAPTER = TypeAdapter(List[Job])


def parse_job_list(raw: Union[str, bytes]) -> List[Job]:
    """Parse and validate a JSON job list; indexes must be unique."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise JobListError(f"Job list is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise JobListError("Job list must be a JSON array")

    try:
        jobs = _JOB_LIST_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise JobListError(f"Invalid job entry: {e}") from e

    seen = set()
    duplicates = set()
    for job in jobs:
        if job.index in seen:
            duplicates.add(job.index)
        seen.add(job.index)
    if duplicates:
        raise JobListError(f"Duplicate job indexes: {sorted(duplicates)}")

    return jobs


async def load_job_list(path: Union[str, Path]) -> List[Job]:
    path = Path(path)
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
    except OSError as e:
        raise JobListError(f"Cannot read job list {path}: {e}") from e

    jobs = parse_job_list(raw)
    logging.info(f"Loaded {len(jobs)} jobs from {path}")
    return jobs
