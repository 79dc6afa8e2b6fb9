"""
Background scheduler.
Runs periodic jobs: due marketing campaigns, trial expiry, monthly report
metrics and the daily review sync.
"""

import asyncio
import json
from datetime import datetime, timedelta, date
from typing import Optional

from sqlalchemy.orm import Session

from app.config.settings import settings
from app.core.logging import get_logger
from app.db.database import SessionLocal
from app.db.base_crud import get_users_with_expiring_trials, get_users_for_monthly_report_generation, update_user
from app.db.crud.marketing_crud import get_due_scheduled_campaigns, update_campaign
from app.db.crud.notification_crud import create_notification, get_monthly_report_by_period, create_monthly_report
from app.db.models import AccountStatus, MarketingCampaignStatus, NotificationType
from app.services.analytics_service import analytics_service
from app.services.marketing_email_service import marketing_email_service
from app.services.review_sync_service import review_sync_service

logger = get_logger(__name__)

REPORT_PERIOD_DAYS = 30


class SchedulerService:
    """Service for periodic background jobs."""

    def __init__(self):
        self.is_running = False
        self.scheduler_task: Optional[asyncio.Task] = None
        self.last_review_sync: Optional[date] = None

    async def start_scheduler(self):
        """Start the scheduler loop."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.is_running = True
        logger.info("Starting scheduler service")
        self.scheduler_task = asyncio.create_task(self._scheduler_loop())

    async def stop_scheduler(self):
        """Stop the scheduler loop."""
        if not self.is_running:
            return

        self.is_running = False
        logger.info("Stopping scheduler service")

        if self.scheduler_task:
            self.scheduler_task.cancel()
            try:
                await self.scheduler_task
            except asyncio.CancelledError:
                pass

    async def _scheduler_loop(self):
        while self.is_running:
            try:
                await self.run_once()
                await asyncio.sleep(settings.scheduler_interval_seconds)
            except asyncio.CancelledError:
                logger.info("Scheduler loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}")
                await asyncio.sleep(60)

    async def run_once(self, now: Optional[datetime] = None):
        """Run every job once on a fresh session."""
        now = now or datetime.utcnow()
        jobs = [
            ("campaigns", self.send_due_campaigns),
            ("trials", self.expire_trials),
            ("monthly reports", self.generate_monthly_reports),
        ]
        if self.last_review_sync != now.date():
            jobs.append(("review sync", self.sync_reviews))

        for name, job in jobs:
            db = SessionLocal()
            try:
                result = job(db, now)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                db.rollback()
                logger.error(f"❌ Scheduler job '{name}' failed: {e}")
            finally:
                db.close()

    async def sync_reviews(self, db: Session, now: datetime):
        """Sync every connected review source, once per day."""
        await review_sync_service.sync_all_review_sources(db)
        self.last_review_sync = now.date()

    async def send_due_campaigns(self, db: Session, now: datetime) -> int:
        """Send scheduled marketing campaigns whose time has come."""
        campaigns = get_due_scheduled_campaigns(db, now)
        if campaigns:
            logger.info(f"Found {len(campaigns)} scheduled campaigns ready to send")

        for campaign in campaigns:
            try:
                await marketing_email_service.send_campaign_to_recipients(db, campaign.id, campaign.user_id)
            except Exception as e:
                db.rollback()
                logger.error(f"❌ Scheduled campaign {campaign.id} failed: {e}")
                update_campaign(db, campaign.id, {"status": MarketingCampaignStatus.FAILED})
        return len(campaigns)

    def expire_trials(self, db: Session, now: datetime) -> int:
        """Close ended trials and tell the user."""
        users = get_users_with_expiring_trials(db, now)
        for user in users:
            if user.subscription_status == "active":
                continue
            update_user(db, user.id, {"account_status": AccountStatus.EXPIRED})
            create_notification(
                db,
                user.id,
                NotificationType.SUBSCRIPTION_EXPIRED,
                "Période d'essai terminée",
                "Votre période d'essai SpeedAI est terminée. Abonnez-vous pour continuer à utiliser nos services.",
            )
            logger.info(f"⏰ Trial expired for user {user.id}")
        return len(users)

    async def generate_monthly_reports(self, db: Session, now: datetime) -> int:
        """Store the activity metrics of the period ending at each upcoming renewal."""
        created = 0
        for user in get_users_for_monthly_report_generation(db, now):
            period_end = user.subscription_current_period_end
            period_start = period_end - timedelta(days=REPORT_PERIOD_DAYS)
            if get_monthly_report_by_period(db, user.id, period_start):
                continue

            metrics = await analytics_service.get_stats(db, user.id, start_from=period_start, start_before=period_end)
            notification = create_notification(
                db,
                user.id,
                NotificationType.MONTHLY_REPORT_READY,
                "Rapport mensuel disponible",
                f"Votre rapport d'activité du {period_start.strftime('%d/%m/%Y')} au "
                f"{period_end.strftime('%d/%m/%Y')} est disponible.",
            )
            create_monthly_report(db, user.id, {
                "period_start": period_start,
                "period_end": period_end,
                "subscription_renewal_at": period_end,
                "metrics": json.dumps(metrics),
                "notification_id": notification.id if notification else None,
            })
            created += 1
        return created


# Global scheduler service instance
scheduler_service = SchedulerService()
