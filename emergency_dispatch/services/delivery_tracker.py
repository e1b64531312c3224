"""
Delivery tracking and delivery analytics for outbound notifications.
"""
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import structlog

from emergency_dispatch.core.exceptions import NotFoundError, ValidationError
from emergency_dispatch.database.repository import DispatchRepository
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.delivery import (
    DailyDeliveryTrend,
    DeliveryRecord,
    DeliveryStatistics,
    DeliveryStatus,
    LanguageComparison,
    TemplatePerformance,
    to_naive_utc,
)

logger = structlog.get_logger(__name__)

TIME_WINDOWS: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

FINAL_STATUSES = (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.UNDELIVERED)


def parse_window(window: str, now: Optional[datetime] = None) -> datetime:
    """
    Convert a window name into the window start.

    Raises:
        ValidationError: If the window is not one of 1h, 24h, 7d, 30d
    """
    if window not in TIME_WINDOWS:
        raise ValidationError(
            f"Unsupported time window '{window}'. Use one of: {', '.join(TIME_WINDOWS)}",
            field="time_range",
        )
    return (now or datetime.utcnow()) - TIME_WINDOWS[window]


def summarize(records: Iterable[DeliveryRecord]) -> DeliveryStatistics:
    """Aggregate delivery records into statistics."""
    records = list(records)
    status_counts = Counter(record.status for record in records)
    delivery_seconds = [
        (record.delivered_at - record.sent_at).total_seconds()
        for record in records
        if record.status == DeliveryStatus.DELIVERED and record.delivered_at
    ]

    total_sent = len(records)
    delivered = status_counts[DeliveryStatus.DELIVERED]

    return DeliveryStatistics(
        total_sent=total_sent,
        delivered=delivered,
        failed=status_counts[DeliveryStatus.FAILED],
        undelivered=status_counts[DeliveryStatus.UNDELIVERED],
        delivery_rate=delivered / total_sent if total_sent else 0.0,
        average_delivery_seconds=(
            sum(delivery_seconds) / len(delivery_seconds) if delivery_seconds else 0.0
        ),
        by_language=dict(Counter(record.language_used.value for record in records)),
        by_template=dict(Counter(record.template_key for record in records)),
    )


class DeliveryTracker:
    """Records outbound messages and reports on their delivery."""

    def __init__(self, repository: DispatchRepository):
        self.repository = repository

    async def record(self, record: DeliveryRecord) -> DeliveryRecord:
        """Persist a new delivery record."""
        saved = await self.repository.save_delivery(record)
        logger.info(
            "Delivery recorded",
            message_id=record.message_id,
            status=record.status.value,
            language=record.language_used.value,
            template_key=record.template_key,
            job_id=record.job_id,
        )
        return saved

    async def track_status(
        self,
        message_id: str,
        status: DeliveryStatus,
        timestamp: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> DeliveryRecord:
        """
        Apply a provider status callback to a delivery record.

        A late 'sent' callback never overwrites a final status.

        Raises:
            NotFoundError: If no record exists for the message ID
        """
        record = await self.repository.get_delivery(message_id)
        if record is None:
            raise NotFoundError(f"Delivery '{message_id}' not found", resource="delivery")

        status = DeliveryStatus(status)
        if record.status in FINAL_STATUSES and status == DeliveryStatus.SENT:
            logger.info(
                "Ignoring stale delivery status",
                message_id=message_id,
                current_status=record.status.value,
            )
            return record

        record.status = status
        if status == DeliveryStatus.DELIVERED:
            record.delivered_at = to_naive_utc(timestamp) or datetime.utcnow()
        if error_message:
            record.error_message = error_message

        await self.repository.update_delivery(record)
        logger.info("Delivery status updated", message_id=message_id, status=status.value)
        return record

    async def _records(
        self,
        since: datetime,
        until: Optional[datetime],
        organization_id: Optional[str] = None,
        language: Optional[Language] = None,
        template_key: Optional[str] = None,
    ) -> List[DeliveryRecord]:
        records = await self.repository.list_deliveries(
            to_naive_utc(since), to_naive_utc(until), organization_id
        )
        return [
            record for record in records
            if (language is None or record.language_used == Language(language))
            and (template_key is None or record.template_key == template_key)
        ]

    async def statistics(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
        language: Optional[Language] = None,
        template_key: Optional[str] = None,
    ) -> DeliveryStatistics:
        """Delivery statistics for a window, optionally filtered."""
        records = await self._records(since, until, organization_id, language, template_key)
        return summarize(records)

    async def template_performance(
        self,
        template_key: str,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> TemplatePerformance:
        """Statistics for one template with its five most common errors."""
        records = await self._records(since, until, organization_id, template_key=template_key)
        errors = Counter(record.error_message for record in records if record.error_message)

        return TemplatePerformance(
            template_key=template_key,
            statistics=summarize(records),
            common_errors=[error for error, _ in errors.most_common(5)],
        )

    async def language_comparison(
        self,
        language_a: Language,
        language_b: Language,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> LanguageComparison:
        """Compare delivery rate and latency between two languages."""
        records = await self._records(since, until, organization_id)
        stats_a = summarize(r for r in records if r.language_used == Language(language_a))
        stats_b = summarize(r for r in records if r.language_used == Language(language_b))

        return LanguageComparison(
            language_a=language_a,
            language_b=language_b,
            statistics_a=stats_a,
            statistics_b=stats_b,
            delivery_rate_difference=stats_a.delivery_rate - stats_b.delivery_rate,
            delivery_time_difference_seconds=(
                stats_a.average_delivery_seconds - stats_b.average_delivery_seconds
            ),
        )

    async def delivery_trends(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> List[DailyDeliveryTrend]:
        """Per-day sent, delivered and failed counts, oldest day first."""
        records = await self._records(since, until, organization_id)
        by_day: Dict[str, List[DeliveryRecord]] = defaultdict(list)
        for record in records:
            by_day[record.sent_at.date().isoformat()].append(record)

        trends = []
        for day in sorted(by_day):
            stats = summarize(by_day[day])
            trends.append(DailyDeliveryTrend(
                date=day,
                sent=stats.total_sent,
                delivered=stats.delivered,
                failed=stats.failed,
                delivery_rate=stats.delivery_rate,
            ))
        return trends
