"""Marketing campaigns and newsletter subscriptions."""
import asyncio
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from auth import Principal
from config import CAMPAIGN_BATCH_SIZE
from errors import BusinessRuleError, NotFoundError
from models import Campaign, NewsletterSubscriber, User
from monitoring import emails_sent_counter
from schemas import CampaignCreate, CampaignUpdate
from services.email_service import EmailSender

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = {"draft", "scheduled"}
UNSENDABLE_STATUSES = {"sent", "cancelled"}


def dedupe_emails(emails: Iterable[str]) -> List[str]:
    """Drop blanks and case-insensitive duplicates, keeping first-seen order."""
    seen = set()
    unique = []
    for email in emails:
        normalized = (email or "").strip().lower()
        if normalized and normalized not in seen:
            seen.add(normalized)
            unique.append(normalized)
    return unique


class CampaignService:
    """Service for composing and sending email campaigns."""

    def __init__(self, email_sender: EmailSender, batch_size: int = CAMPAIGN_BATCH_SIZE):
        """
        Initialize campaign service.

        Args:
            email_sender: Delivery backend
            batch_size: Recipients sent concurrently per batch
        """
        self.email_sender = email_sender
        self.batch_size = max(1, batch_size)

    def list_campaigns(self, db: Session, status: Optional[str] = None) -> List[Campaign]:
        query = db.query(Campaign)
        if status:
            query = query.filter(Campaign.status == status)
        return query.order_by(Campaign.created_at.desc(), Campaign.id.desc()).all()

    def get(self, db: Session, campaign_id: int) -> Campaign:
        campaign = db.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign not found")
        return campaign

    def create(self, db: Session, payload: CampaignCreate, admin: Principal) -> Campaign:
        if payload.recipient_type == "custom" and not payload.recipient_emails:
            raise BusinessRuleError("Custom campaigns need at least one recipient email")

        campaign = Campaign(
            **payload.model_dump(exclude={"recipient_emails"}),
            recipient_emails=[str(email) for email in payload.recipient_emails],
            status="scheduled" if payload.scheduled_at else "draft",
            created_by=admin.id,
        )
        db.add(campaign)
        db.commit()
        db.refresh(campaign)

        logger.info("Campaign created", extra={"campaign_id": campaign.id, "recipient_type": campaign.recipient_type})
        return campaign

    def update(self, db: Session, campaign_id: int, payload: CampaignUpdate) -> Campaign:
        campaign = self.get(db, campaign_id)
        if campaign.status not in EDITABLE_STATUSES:
            raise BusinessRuleError("Only draft or scheduled campaigns can be edited")

        for field, value in payload.model_dump(exclude_unset=True).items():
            if field == "recipient_emails":
                value = [str(email) for email in value or []]
            setattr(campaign, field, value)
        db.commit()
        db.refresh(campaign)
        return campaign

    def delete(self, db: Session, campaign_id: int) -> None:
        campaign = self.get(db, campaign_id)
        if campaign.status == "sending":
            raise BusinessRuleError("Cannot delete a campaign while it is sending")
        db.delete(campaign)
        db.commit()

    def resolve_recipients(self, db: Session, campaign: Campaign) -> List[str]:
        """Recipient addresses for the campaign's selection rule, de-duplicated."""
        emails: List[str] = []
        if campaign.recipient_type in ("all", "subscribers"):
            emails.extend(
                row.email for row in
                db.query(NewsletterSubscriber.email).filter(NewsletterSubscriber.is_subscribed.is_(True))
            )
        if campaign.recipient_type in ("all", "customers"):
            emails.extend(
                row.email for row in
                db.query(User.email).filter(User.role == "customer", User.is_active.is_(True))
            )
        if campaign.recipient_type == "custom":
            emails.extend(campaign.recipient_emails or [])
        return dedupe_emails(emails)

    async def send_campaign(self, db: Session, campaign_id: int) -> Campaign:
        """
        Send a campaign to its recipients.

        Recipients are processed in fixed-size batches, concurrently within a
        batch. Each failed delivery is counted and not retried; counters are
        saved after every batch. A campaign left in "sending" by an
        interrupted run is sent again from the start.

        Raises:
            BusinessRuleError: If the campaign was already sent or cancelled, or has no recipients
        """
        campaign = self.get(db, campaign_id)
        if campaign.status in UNSENDABLE_STATUSES:
            raise BusinessRuleError(f"Campaign cannot be sent (status: {campaign.status})")

        recipients = self.resolve_recipients(db, campaign)
        if not recipients:
            raise BusinessRuleError("No recipients found for this campaign")
        if campaign.status == "sending":
            logger.warning("Restarting interrupted campaign send", extra={
                "campaign_id": campaign.id,
                "success_count": campaign.success_count,
                "failure_count": campaign.failure_count
            })

        campaign.status = "sending"
        campaign.total_recipients = len(recipients)
        campaign.success_count = 0
        campaign.failure_count = 0
        db.commit()
        logger.info("Campaign send started", extra={"campaign_id": campaign.id, "recipients": len(recipients)})

        for start in range(0, len(recipients), self.batch_size):
            batch = recipients[start:start + self.batch_size]
            results = await asyncio.gather(*(self._deliver(campaign, email) for email in batch))
            delivered = sum(1 for ok in results if ok)
            campaign.success_count += delivered
            campaign.failure_count += len(batch) - delivered
            db.commit()

        campaign.status = "sent"
        campaign.sent_at = datetime.utcnow()
        db.commit()
        db.refresh(campaign)

        logger.info("Campaign sent", extra={
            "campaign_id": campaign.id,
            "success_count": campaign.success_count,
            "failure_count": campaign.failure_count
        })
        return campaign

    async def _deliver(self, campaign: Campaign, email: str) -> bool:
        try:
            await self.email_sender.send(email, campaign.subject, campaign.content)
        except Exception as e:
            emails_sent_counter.add(1, {"kind": "campaign", "status": "failed"})
            logger.warning("Campaign email failed", extra={"campaign_id": campaign.id, "error": str(e)})
            return False
        emails_sent_counter.add(1, {"kind": "campaign", "status": "sent"})
        return True

    def subscribe(self, db: Session, email: str) -> NewsletterSubscriber:
        """Subscribe an address; subscribing again re-activates it."""
        normalized = email.strip().lower()
        subscriber = db.query(NewsletterSubscriber).filter(NewsletterSubscriber.email == normalized).first()
        if subscriber is None:
            subscriber = NewsletterSubscriber(email=normalized)
            db.add(subscriber)
        subscriber.is_subscribed = True
        db.commit()
        db.refresh(subscriber)
        return subscriber
