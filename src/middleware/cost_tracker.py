"""Provider spend accounting.

Accumulates cost per (organization, user, provider, endpoint) and compares
monthly provider spend against three-tier thresholds. The tracker only
reports a status; callers decide whether to hold back further spend.
"""

import calendar
import csv
import io
import json
from collections import defaultdict
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Literal

import structlog
from pydantic import BaseModel, Field, model_validator

from src.utils.models import utc_now

logger = structlog.get_logger()

ThresholdStatus = Literal["ok", "warning", "critical", "exceeded"]
UsageKey = tuple[str, str, str, str, date]


class CostThreshold(BaseModel):
    """Monthly spend limits for one provider, in USD."""

    warning: float = Field(ge=0.0)
    critical: float = Field(ge=0.0)
    hard_limit: float = Field(ge=0.0)

    @model_validator(mode="after")
    def _check_order(self) -> "CostThreshold":
        if not self.warning <= self.critical <= self.hard_limit:
            raise ValueError("thresholds must satisfy warning <= critical <= hard_limit")
        return self


DEFAULT_THRESHOLDS: dict[str, CostThreshold] = {
    "dataforseo": CostThreshold(warning=50.0, critical=100.0, hard_limit=250.0),
    "tavily": CostThreshold(warning=25.0, critical=50.0, hard_limit=100.0),
    "default": CostThreshold(warning=100.0, critical=200.0, hard_limit=500.0),
}


class DailyUsage(BaseModel):
    """Additive spend for one (organization, user, provider, endpoint, day)."""

    organization_id: str
    user_id: str
    provider: str
    endpoint: str
    usage_date: date
    request_count: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)


class CostSummary(BaseModel):
    """Rollup of cost records over a period."""

    total_cost: float = 0.0
    provider_breakdown: dict[str, float] = Field(default_factory=dict)
    endpoint_breakdown: dict[str, float] = Field(default_factory=dict)
    daily_costs: dict[str, float] = Field(default_factory=dict)
    request_count: int = 0


class ThresholdCheck(BaseModel):
    provider: str
    status: ThresholdStatus
    current_cost: float
    threshold: CostThreshold


class CostProjection(BaseModel):
    provider: str
    projected_monthly_cost: float
    projected_daily_cost: float
    confidence: Literal["high", "medium", "low"]


class ProviderCostReport(BaseModel):
    provider: str
    monthly_total: float
    daily_total: float
    status: ThresholdStatus
    threshold: CostThreshold


class CostReport(BaseModel):
    """Cost and threshold read model for operational tooling."""

    organization_id: str
    generated_at: datetime
    providers: list[ProviderCostReport]
    monthly_total: float
    daily_total: float


class CostTracker:
    """Tracks provider spend per organization."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        retention_days: int | None = 400,
    ) -> None:
        """Initialize the tracker.

        Charges are folded into per-day aggregates as they arrive, so memory
        grows with the number of distinct usage rows rather than calls.

        Args:
            clock: Returns the current time, used for usage dates and rollups.
            retention_days: Days of daily usage kept; None keeps everything.
        """
        if retention_days is not None and retention_days < 1:
            raise ValueError("retention_days must be at least 1")
        self._clock = clock
        self.retention_days = retention_days
        self._usage: dict[UsageKey, DailyUsage] = {}
        self._monthly: dict[tuple[str, int, int, str], float] = defaultdict(float)
        self._last_prune: date | None = None
        self._thresholds: dict[str, CostThreshold] = dict(DEFAULT_THRESHOLDS)

    def track_cost(
        self,
        organization_id: str,
        user_id: str,
        provider: str,
        endpoint: str,
        cost: float,
    ) -> ThresholdCheck:
        """Record a provider charge.

        Args:
            organization_id: Organization billed for the call.
            user_id: User who triggered the call.
            provider: Provider name, e.g. "tavily".
            endpoint: Provider operation, e.g. "section_research".
            cost: Charge in USD.

        Returns:
            Threshold status for the provider after recording.
        """
        if cost < 0:
            raise ValueError("cost must be non-negative")

        now = self._clock()
        today = now.date()
        if self._last_prune != today:
            self._prune(today)

        key = (organization_id, user_id, provider, endpoint, today)
        usage = self._usage.get(key)
        if usage is None:
            usage = DailyUsage(
                organization_id=organization_id,
                user_id=user_id,
                provider=provider,
                endpoint=endpoint,
                usage_date=today,
            )
            self._usage[key] = usage
        usage.request_count += 1
        usage.total_cost += cost
        self._monthly[(organization_id, now.year, now.month, provider)] += cost
        logger.debug(
            "Cost tracked",
            organization_id=organization_id,
            provider=provider,
            endpoint=endpoint,
            cost=cost,
        )

        check = self.check_thresholds(organization_id, provider)
        if check.status != "ok":
            logger.warning(
                "Provider spend threshold reached",
                organization_id=organization_id,
                provider=provider,
                status=check.status,
                current_cost=round(check.current_cost, 4),
            )
        return check

    def _prune(self, today: date) -> None:
        self._last_prune = today
        if self.retention_days is None:
            return
        cutoff = today - timedelta(days=self.retention_days)
        expired = [key for key, usage in self._usage.items() if usage.usage_date < cutoff]
        for key in expired:
            del self._usage[key]
        stale_months = [
            key for key in self._monthly if (key[1], key[2]) < (cutoff.year, cutoff.month)
        ]
        for key in stale_months:
            del self._monthly[key]
        if expired:
            logger.info("Old cost usage pruned", rows=len(expired), before=cutoff.isoformat())

    def get_daily_usage(
        self,
        organization_id: str,
        user_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DailyUsage]:
        """Return the daily usage rows for an organization, oldest first."""
        selected = []
        for usage in self._usage.values():
            if usage.organization_id != organization_id:
                continue
            if user_id and usage.user_id != user_id:
                continue
            if start is not None and usage.usage_date < start:
                continue
            if end is not None and usage.usage_date > end:
                continue
            selected.append(usage.model_copy())
        selected.sort(key=lambda u: (u.usage_date, u.provider, u.endpoint, u.user_id))
        return selected

    def get_cost_summary(
        self,
        organization_id: str,
        user_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> CostSummary:
        """Summarize spend for an organization.

        Args:
            organization_id: Organization to summarize.
            user_id: Restrict to one user; all users when None.
            start: First day included (inclusive).
            end: Last day included (inclusive).

        Returns:
            CostSummary with provider, endpoint and daily breakdowns.
        """
        providers: dict[str, float] = defaultdict(float)
        endpoints: dict[str, float] = defaultdict(float)
        daily: dict[str, float] = defaultdict(float)
        total = 0.0
        requests = 0

        for usage in self.get_daily_usage(organization_id, user_id, start, end):
            total += usage.total_cost
            requests += usage.request_count
            providers[usage.provider] += usage.total_cost
            endpoints[f"{usage.provider}:{usage.endpoint}"] += usage.total_cost
            daily[usage.usage_date.isoformat()] += usage.total_cost

        return CostSummary(
            total_cost=total,
            provider_breakdown=dict(providers),
            endpoint_breakdown=dict(endpoints),
            daily_costs=dict(daily),
            request_count=requests,
        )

    def get_monthly_costs(
        self, organization_id: str, year: int, month: int, user_id: str | None = None
    ) -> CostSummary:
        last_day = calendar.monthrange(year, month)[1]
        return self.get_cost_summary(
            organization_id, user_id, date(year, month, 1), date(year, month, last_day)
        )

    def get_daily_costs(
        self, organization_id: str, day: date, user_id: str | None = None
    ) -> CostSummary:
        return self.get_cost_summary(organization_id, user_id, day, day)

    def check_thresholds(self, organization_id: str, provider: str) -> ThresholdCheck:
        """Compare this month's provider spend with its thresholds."""
        now = self._clock()
        threshold = self.get_threshold(provider)
        current = self._monthly.get((organization_id, now.year, now.month, provider), 0.0)

        status: ThresholdStatus = "ok"
        if current >= threshold.hard_limit:
            status = "exceeded"
        elif current >= threshold.critical:
            status = "critical"
        elif current >= threshold.warning:
            status = "warning"

        return ThresholdCheck(
            provider=provider, status=status, current_cost=current, threshold=threshold
        )

    def set_threshold(self, provider: str, threshold: CostThreshold) -> None:
        self._thresholds[provider] = threshold
        logger.info("Cost threshold updated", provider=provider, **threshold.model_dump())

    def get_threshold(self, provider: str) -> CostThreshold:
        return self._thresholds.get(provider, self._thresholds["default"])

    def get_cost_projection(
        self, organization_id: str, provider: str, user_id: str | None = None
    ) -> CostProjection:
        """Project month-end spend from the month so far."""
        now = self._clock()
        day_of_month = now.day
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        summary = self.get_monthly_costs(organization_id, now.year, now.month, user_id)
        current = summary.provider_breakdown.get(provider, 0.0)

        daily_rate = current / day_of_month
        confidence: Literal["high", "medium", "low"] = "low"
        if day_of_month >= 20:
            confidence = "high"
        elif day_of_month >= 10:
            confidence = "medium"

        return CostProjection(
            provider=provider,
            projected_monthly_cost=daily_rate * days_in_month,
            projected_daily_cost=daily_rate,
            confidence=confidence,
        )

    def get_cost_report(self, organization_id: str) -> CostReport:
        """Build the per-provider monthly/daily report with threshold status."""
        now = self._clock()
        monthly = self.get_monthly_costs(organization_id, now.year, now.month)
        daily = self.get_daily_costs(organization_id, now.date())

        providers = sorted(
            set(monthly.provider_breakdown) | (set(self._thresholds) - {"default"})
        )
        entries = []
        for provider in providers:
            check = self.check_thresholds(organization_id, provider)
            entries.append(
                ProviderCostReport(
                    provider=provider,
                    monthly_total=monthly.provider_breakdown.get(provider, 0.0),
                    daily_total=daily.provider_breakdown.get(provider, 0.0),
                    status=check.status,
                    threshold=check.threshold,
                )
            )

        return CostReport(
            organization_id=organization_id,
            generated_at=now,
            providers=entries,
            monthly_total=monthly.total_cost,
            daily_total=daily.total_cost,
        )

    def export_cost_data(
        self,
        organization_id: str,
        user_id: str | None = None,
        fmt: Literal["json", "csv"] = "json",
    ) -> str:
        """Export daily usage rows grouped by provider and endpoint.

        Args:
            organization_id: Organization to export.
            user_id: Restrict to one user; all users when None.
            fmt: "json" or "csv".

        Returns:
            Serialized usage rows.
        """
        grouped: dict[tuple[str, str, str], list[float]] = defaultdict(lambda: [0, 0.0])
        for usage in self.get_daily_usage(organization_id, user_id):
            key = (usage.usage_date.isoformat(), usage.provider, usage.endpoint)
            grouped[key][0] += usage.request_count
            grouped[key][1] += usage.total_cost

        rows = [
            {
                "usage_date": day,
                "provider": provider,
                "endpoint": endpoint,
                "request_count": int(requests),
                "total_cost": round(cost, 6),
            }
            for (day, provider, endpoint), (requests, cost) in sorted(grouped.items())
        ]

        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(["Date", "Provider", "Endpoint", "Requests", "Cost"])
            for row in rows:
                writer.writerow(
                    [
                        row["usage_date"],
                        row["provider"],
                        row["endpoint"],
                        row["request_count"],
                        f"{row['total_cost']:.6f}",
                    ]
                )
            return buffer.getvalue()
        return json.dumps(rows, indent=2)

    def get_request_count(self) -> int:
        """Total charges recorded across retained usage."""
        return sum(usage.request_count for usage in self._usage.values())
