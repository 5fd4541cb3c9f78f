"""AWS Cost Explorer billing source.

Fetches daily UnblendedCost grouped by linked account and service. Each
``get_cost_and_usage`` page is one blocking boto3 call run in a worker
thread, so page boundaries are the only suspension points.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, ProfileNotFound
from botocore.exceptions import ConnectionError as BotoConnectionError

from costpulse.constants import (
    ACCOUNT_NAME_LOOKBACK_DAYS,
    COST_METRIC,
    DEFAULT_CURRENCY,
    THROTTLING_ERROR_CODES,
)
from costpulse.costs.errors import FetchError
from costpulse.costs.models import CostRecord
from costpulse.logging import get_logger
from costpulse.utils import utc_today

log = get_logger("costpulse.costs.aws")

_GROUP_BY = [
    {"Type": "DIMENSION", "Key": "LINKED_ACCOUNT"},
    {"Type": "DIMENSION", "Key": "SERVICE"},
]


def build_client(profile: str | None, region: str) -> Any:
    """Create a Cost Explorer client, falling back to the default credential chain."""
    try:
        session = boto3.Session(profile_name=profile, region_name=region)
    except ProfileNotFound:
        log.warning("aws_profile_not_found", profile=profile)
        session = boto3.Session(region_name=region)
    return session.client("ce")


class CostExplorerFetcher:
    """Paginated daily cost fetcher for AWS Organizations billing."""

    def __init__(
        self,
        client: Any,
        *,
        clock: Callable[[], date] = utc_today,
    ) -> None:
        self._client = client
        self._clock = clock
        self._account_names: dict[str, str] | None = None

    @classmethod
    def from_settings(cls, profile: str | None, region: str) -> CostExplorerFetcher:
        return cls(build_client(profile, region))

    async def fetch_pages(self, start: date, end: date) -> AsyncGenerator[list[CostRecord], None]:
        """Yield one list of records per Cost Explorer page for ``[start, end]``."""
        names = await self._resolve_account_names()
        request: dict[str, Any] = {
            "TimePeriod": {
                "Start": start.isoformat(),
                # Cost Explorer end dates are exclusive.
                "End": (end + timedelta(days=1)).isoformat(),
            },
            "Granularity": "DAILY",
            "Metrics": [COST_METRIC],
            "GroupBy": _GROUP_BY,
        }

        while True:
            response = await self._call("get_cost_and_usage", **request)
            yield self._parse_page(response, names)

            token = response.get("NextPageToken")
            if not token:
                break
            request["NextPageToken"] = token

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_page(response: dict[str, Any], names: dict[str, str]) -> list[CostRecord]:
        records: list[CostRecord] = []
        for result in response.get("ResultsByTime", []):
            day = date.fromisoformat(result["TimePeriod"]["Start"])
            for group in result.get("Groups", []):
                account_id, service = group["Keys"][0], group["Keys"][1]
                metric = group["Metrics"][COST_METRIC]
                try:
                    amount = Decimal(metric["Amount"])
                except (InvalidOperation, TypeError) as exc:
                    raise FetchError(
                        f"unparseable amount {metric.get('Amount')!r} for {account_id}/{service}"
                    ) from exc
                records.append(
                    CostRecord(
                        date=day,
                        account_id=account_id,
                        account_name=names.get(account_id, account_id),
                        service=service,
                        cost=amount,
                        currency=metric.get("Unit") or DEFAULT_CURRENCY,
                    )
                )
        return records

    # ------------------------------------------------------------------
    # Account names
    # ------------------------------------------------------------------

    async def _resolve_account_names(self) -> dict[str, str]:
        """Map account ids to display names; ids stand in when lookup fails."""
        if self._account_names is not None:
            return self._account_names

        today = self._clock()
        request: dict[str, Any] = {
            "TimePeriod": {
                "Start": (today - timedelta(days=ACCOUNT_NAME_LOOKBACK_DAYS)).isoformat(),
                "End": today.isoformat(),
            },
            "Dimension": "LINKED_ACCOUNT",
            "Context": "COST_AND_USAGE",
        }
        names: dict[str, str] = {}
        try:
            while True:
                response = await self._call("get_dimension_values", **request)
                for value in response.get("DimensionValues", []):
                    account_id = value.get("Value")
                    if not account_id:
                        continue
                    attributes = value.get("Attributes") or {}
                    names[account_id] = attributes.get("description") or account_id
                token = response.get("NextPageToken")
                if not token:
                    break
                request["NextPageToken"] = token
        except (FetchError, AttributeError, KeyError, TypeError) as exc:
            log.warning("account_name_lookup_failed", error=str(exc))
            return {}

        self._account_names = names
        log.debug("account_names_resolved", count=len(names))
        return names

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _call(self, operation: str, **params: Any) -> dict[str, Any]:
        """Run one boto3 call off the event loop, translating SDK errors."""
        method = getattr(self._client, operation)
        try:
            response: dict[str, Any] = await asyncio.to_thread(method, **params)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            raise FetchError(
                f"{operation} failed: {code or exc}",
                transient=code in THROTTLING_ERROR_CODES,
            ) from exc
        except BotoConnectionError as exc:
            raise FetchError(f"{operation} failed: {exc}", transient=True) from exc
        except BotoCoreError as exc:
            raise FetchError(f"{operation} failed: {exc}") from exc
        return response
