#!/usr/bin/env python
"""Load an estimates CSV into the DynamoDB reference table.

Rows are written in batches of 25. A batch whose write is throttled, or that
comes back with unprocessed items, is retried with exponential backoff.
"""
from __future__ import annotations

import argparse
import asyncio
from typing import Any

import boto3
import pandas as pd
import structlog
from boto3.dynamodb.types import TypeSerializer

from backend.core.errors import TransientInfraError
from backend.core.logging import configure_logging
from backend.core.retry import ExponentialBackoff, call_with_retry
from backend.core.settings import get_settings
from backend.infrastructure.aws import run_boto
from backend.infrastructure.dynamodb import to_item

BATCH_SIZE = 25

logger = structlog.get_logger(__name__)


def load_rows(path: str) -> list[dict[str, Any]]:
    frame = pd.read_csv(path)
    if "id" not in frame.columns:
        raise SystemExit(f"{path}: an 'id' column is required")
    frame = frame.dropna(subset=["id"])
    frame["id"] = frame["id"].astype(int)
    frame = frame.where(pd.notna(frame), None)
    return [to_item(record) for record in frame.to_dict(orient="records")]


class BatchWriter:
    def __init__(self, client: Any, table: str) -> None:
        self._client = client
        self._table = table

    async def write(self, rows: list[dict[str, Any]]) -> None:
        requests = [{"PutRequest": {"Item": _typed(row)}} for row in rows]
        response = await run_boto(
            self._client.batch_write_item,
            RequestItems={self._table: requests},
            operation="estimates.batch_write",
        )
        unprocessed = (response.get("UnprocessedItems") or {}).get(self._table) or []
        if unprocessed:
            raise TransientInfraError(
                f"{len(unprocessed)} item(s) left unprocessed",
                operation="estimates.batch_write",
            )


def _typed(row: dict[str, Any]) -> dict[str, Any]:
    serializer = TypeSerializer()
    return {key: serializer.serialize(value) for key, value in row.items() if value is not None}


async def seed(path: str, table: str, policy: ExponentialBackoff) -> int:
    settings = get_settings()
    kwargs: dict[str, Any] = {"region_name": settings.aws_region}
    if settings.dynamodb_endpoint:
        kwargs["endpoint_url"] = settings.dynamodb_endpoint
    writer = BatchWriter(boto3.client("dynamodb", **kwargs), table)

    rows = load_rows(path)
    for start in range(0, len(rows), BATCH_SIZE):
        chunk = rows[start : start + BATCH_SIZE]
        await call_with_retry(writer.write, chunk, policy=policy, operation="estimates.batch_write")
        logger.info("estimates_batch_written", offset=start, size=len(chunk))
    return len(rows)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the estimates table from a CSV file")
    parser.add_argument("--input", required=True, help="CSV produced by make_sample_estimates.py")
    parser.add_argument("--table", default=None, help="table name (default: ESTIMATES_TABLE)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    policy = ExponentialBackoff(
        max_retries=max(settings.retry_max_attempts, 5),
        base_delay=settings.retry_base_delay,
    )
    count = asyncio.run(seed(args.input, args.table or settings.estimates_table, policy))
    print(f"Seeded {count} estimate(s)")


if __name__ == "__main__":
    main()
