"""Live API smoke tests.

Skipped unless ENABLE_API_TESTS=1 and STRATA_PROJECT_ID / STRATA_ACCESS_TOKEN
are set.
"""

from __future__ import annotations

import pytest

from strata.client import Client
from strata.config import Config

pytestmark = pytest.mark.api


@pytest.mark.asyncio
async def test_live_dry_run_query(live_config: Config) -> None:
    async with Client(live_config) as client:
        job = await client.query("SELECT 1", dry_run=True, use_legacy_sql=False)

    assert job.job_reference.project_id == live_config.project_id


@pytest.mark.asyncio
async def test_live_batch_of_lookups(live_config: Config) -> None:
    seen: list[tuple[object, BaseException | None]] = []

    def record(result: object, error: BaseException | None) -> None:
        seen.append((result, error))

    async with Client(live_config) as client:
        async with client.batch():
            await client.dataset("strata_missing_a", callback=record)
            await client.dataset("strata_missing_b", callback=record)

    assert seen == [(None, None), (None, None)]
