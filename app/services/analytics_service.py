"""
Analytics service for dashboard call statistics.
"""

import logging
import uuid
from collections import Counter
from typing import Dict, Any, List, Optional
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import func, and_, or_, case

from app.config.settings import settings
from app.db.models import Call, CallStatus
from app.db.base_crud import get_calls
from app.services.call_analytics import (
    get_time_filter_date, get_previous_period, format_duration, calculate_percentage_change,
    aggregate_calls_by_hour, aggregate_calls_by_day, aggregate_calls_by_time_slot,
    calculate_average_duration, find_peak_hour, find_best_performing_hour, distribution_to_list,
)

logger = logging.getLogger(__name__)

# Business policy: time an operator spends per handled call, and revenue per converted client
MINUTES_PER_CALL = 3
AVERAGE_CLIENT_VALUE = 80


def _first_set(*values):
    return next(value for value in values if value is not None)


def successful_call_condition():
    """
    Rows counted as successful.

    A call is successful when explicitly converted, or when it completed
    before conversion results were recorded (null or empty result).
    """
    return or_(
        Call.conversion_result == "converted",
        and_(
            Call.status == CallStatus.COMPLETED,
            or_(Call.conversion_result.is_(None), Call.conversion_result == ""),
        ),
    )


class AnalyticsService:
    """Service for generating call statistics for the dashboard."""

    def __init__(self, minutes_per_call: Optional[int] = None, average_client_value: Optional[int] = None):
        self.minutes_per_call = _first_set(minutes_per_call, settings.minutes_per_call, MINUTES_PER_CALL)
        self.average_client_value = _first_set(
            average_client_value, settings.average_client_value, AVERAGE_CLIENT_VALUE
        )

    async def get_stats(
        self,
        db: Session,
        user_id: uuid.UUID,
        time_filter: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_before: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Headline call statistics for one user.

        Args:
            db: Database session
            user_id: Tenant
            time_filter: hour, today, two_days, week or None
            start_from: Explicit lower bound (overrides time_filter)
            start_before: Explicit exclusive upper bound

        Returns:
            Dictionary with totalCalls, activeCalls, conversionRate,
            averageDuration, hoursSaved and estimatedRevenue
        """
        try:
            filters = [Call.user_id == user_id]
            lower_bound = start_from or get_time_filter_date(time_filter)
            if lower_bound:
                filters.append(Call.start_time >= lower_bound)
            if start_before:
                filters.append(Call.start_time < start_before)

            total_calls, active_calls, successful_calls = db.query(
                func.count(Call.id),
                func.coalesce(func.sum(case((Call.status == CallStatus.ACTIVE, 1), else_=0)), 0),
                func.coalesce(func.sum(case((successful_call_condition(), 1), else_=0)), 0),
            ).filter(*filters).one()

            average_duration = db.query(func.avg(Call.duration)).filter(
                *filters,
                Call.status == CallStatus.COMPLETED,
                Call.duration.isnot(None),
            ).scalar()

            total_calls = int(total_calls or 0)
            successful_calls = int(successful_calls or 0)
            conversion_rate = round(successful_calls / total_calls * 100, 1) if total_calls > 0 else 0

            return {
                "totalCalls": total_calls,
                "activeCalls": int(active_calls or 0),
                "conversionRate": conversion_rate,
                "averageDuration": round(float(average_duration)) if average_duration is not None else 0,
                "hoursSaved": round(total_calls * self.minutes_per_call / 60, 1),
                "estimatedRevenue": successful_calls * self.average_client_value,
            }
        except Exception as e:
            logger.error(f"Error computing call stats for user {user_id}: {e}")
            raise

    async def get_chart_data(
        self,
        db: Session,
        user_id: uuid.UUID,
        time_filter: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Per-day call series for the dashboard chart.

        Only dates with at least one call are returned, ordered by date.

        Returns:
            List of {date, totalCalls, completedCalls, averageDuration}
        """
        try:
            day = func.date(Call.start_time)
            completed_duration = case(
                (and_(Call.status == CallStatus.COMPLETED, Call.duration.isnot(None)), Call.duration),
                else_=None,
            )

            query = db.query(
                day.label("date"),
                func.count(Call.id).label("total_calls"),
                func.coalesce(func.sum(case((Call.status == CallStatus.COMPLETED, 1), else_=0)), 0).label("completed_calls"),
                func.avg(completed_duration).label("average_duration"),
            ).filter(Call.user_id == user_id)

            lower_bound = get_time_filter_date(time_filter)
            if lower_bound:
                query = query.filter(Call.start_time >= lower_bound)

            rows = query.group_by(day).order_by(day).all()

            return [
                {
                    "date": str(row.date),
                    "totalCalls": int(row.total_calls),
                    "completedCalls": int(row.completed_calls),
                    "averageDuration": round(float(row.average_duration)) if row.average_duration is not None else 0,
                }
                for row in rows
            ]
        except Exception as e:
            logger.error(f"Error computing chart data for user {user_id}: {e}")
            raise

    async def get_enriched_stats(
        self,
        db: Session,
        user_id: uuid.UUID,
        time_filter: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Stats with previous-period comparison and call distributions.
        """
        try:
            now = datetime.utcnow()
            current = await self.get_stats(db, user_id, time_filter)

            comparison = None
            previous_period = get_previous_period(time_filter, now)
            if previous_period:
                previous_start, previous_end = previous_period
                previous = await self.get_stats(db, user_id, start_from=previous_start, start_before=previous_end)
                comparison = {
                    "previous": previous,
                    "totalCallsChange": calculate_percentage_change(current["totalCalls"], previous["totalCalls"]),
                    "conversionRateChange": round(current["conversionRate"] - previous["conversionRate"], 1),
                    "averageDurationChange": calculate_percentage_change(
                        current["averageDuration"], previous["averageDuration"]
                    ),
                    "revenueChange": calculate_percentage_change(
                        current["estimatedRevenue"], previous["estimatedRevenue"]
                    ),
                }

            calls = get_calls(db, user_id, time_filter=time_filter)
            hourly = aggregate_calls_by_hour(calls)

            return {
                **current,
                "comparison": comparison,
                "formattedAverageDuration": format_duration(calculate_average_duration(
                    [call for call in calls if call.status == CallStatus.COMPLETED]
                )),
                "peakHour": find_peak_hour(hourly),
                "bestPerformingHour": find_best_performing_hour(hourly),
                "hourlyDistribution": distribution_to_list(hourly, "hour"),
                "dailyDistribution": distribution_to_list(aggregate_calls_by_day(calls), "day"),
                "timeSlotDistribution": distribution_to_list(aggregate_calls_by_time_slot(calls), "slot"),
            }
        except Exception as e:
            logger.error(f"Error computing enriched stats for user {user_id}: {e}")
            raise

    def get_user_stats(self, db: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Activity summary and health status of one account (admin view).

        Health is red when the account has been silent for a week, or when
        more than half of the last day's calls failed; orange above 20%
        failures; green otherwise.
        """
        now = now or datetime.utcnow()
        last_24h = now - timedelta(hours=24)

        total_calls, total_duration, last_activity = db.query(
            func.count(Call.id),
            func.coalesce(func.sum(Call.duration), 0),
            func.max(Call.start_time),
        ).filter(Call.user_id == user_id).one()

        recent_calls, failed_calls = db.query(
            func.count(Call.id),
            func.coalesce(func.sum(case((Call.status == CallStatus.FAILED, 1), else_=0)), 0),
        ).filter(Call.user_id == user_id, Call.start_time >= last_24h).one()

        recent_calls = int(recent_calls or 0)
        failed_calls = int(failed_calls or 0)

        health_status = "green"
        if recent_calls == 0 and (last_activity is None or last_activity < now - timedelta(days=7)):
            health_status = "red"
        elif failed_calls > 0:
            failure_rate = failed_calls / max(recent_calls, 1)
            if failure_rate > 0.5:
                health_status = "red"
            elif failure_rate > 0.2:
                health_status = "orange"

        return {
            "totalCalls": int(total_calls or 0),
            "totalMinutes": round(int(total_duration or 0) / 60),
            "lastActivity": last_activity.isoformat() if last_activity else None,
            "healthStatus": health_status,
        }

    def get_agent_report(self, calls: List[Call], month: int, year: int, agent_id: str) -> Dict[str, Any]:
        """
        Monthly activity report for one voice agent.

        Args:
            calls: Calls of the agent within the month
            month: Report month (1-12)
            year: Report year
            agent_id: Voice agent id

        Returns:
            Dictionary with summary, conversions, clientInsights, services,
            bookings, activity and calls sections
        """
        total_calls = len(calls)
        answered_calls = sum(1 for call in calls if call.status == CallStatus.COMPLETED)
        missed_calls = sum(1 for call in calls if call.status == CallStatus.NO_ANSWER)

        durations = [call.duration for call in calls if call.duration]
        total_duration = sum(durations)

        conversions = Counter(call.conversion_result or "unknown" for call in calls)
        moods = Counter(call.client_mood for call in calls if call.client_mood)
        services = Counter(call.service_type for call in calls if call.service_type)
        appointment_days = Counter(call.appointment_day_of_week for call in calls if call.appointment_day_of_week)
        hourly = Counter(f"{call.start_time.hour}:00" for call in calls)

        keywords: Counter = Counter()
        for call in calls:
            for keyword in call.keywords or []:
                normalized = str(keyword).lower().strip()
                if len(normalized) > 2:
                    keywords[normalized] += 1

        confidences = [call.booking_confidence for call in calls if call.booking_confidence is not None]
        returning_clients = sum(1 for call in calls if call.is_returning_client)
        upsells = sum(1 for call in calls if call.upsell_accepted)

        def rate(count: int) -> float:
            return round(count / total_calls * 100, 1) if total_calls > 0 else 0

        start_date = datetime(year, month, 1)
        end_date = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)

        return {
            "agentId": agent_id,
            "period": {
                "month": month,
                "year": year,
                "startDate": start_date.isoformat(),
                "endDate": (end_date - timedelta(microseconds=1)).isoformat(),
            },
            "summary": {
                "totalCalls": total_calls,
                "answeredCalls": answered_calls,
                "missedCalls": missed_calls,
                "answerRate": rate(answered_calls),
                "totalDurationMinutes": round(total_duration / 60),
                "averageDurationSeconds": round(total_duration / len(durations)) if durations else 0,
            },
            "conversions": {
                "breakdown": dict(conversions),
                "total": sum(conversions.values()),
            },
            "clientInsights": {
                "moodDistribution": dict(moods),
                "returningClients": returning_clients,
                "returningClientRate": rate(returning_clients),
            },
            "services": {"distribution": dict(services)},
            "bookings": {
                "byDayOfWeek": dict(appointment_days),
                "avgConfidence": round(sum(confidences) / len(confidences)) if confidences else 0,
                "lastMinuteCount": sum(1 for call in calls if call.is_last_minute),
                "upsellAccepted": upsells,
                "upsellRate": rate(upsells),
            },
            "activity": {
                "hourlyDistribution": dict(hourly),
                "topKeywords": [
                    {"keyword": keyword, "count": count}
                    for keyword, count in keywords.most_common(15)
                ],
            },
            "calls": [call.to_dict() for call in calls],
            "generatedAt": datetime.utcnow().isoformat(),
        }


# Global analytics service instance
analytics_service = AnalyticsService()
