"""Newsletter subscription."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_campaign_service
from schemas import NewsletterSubscribeRequest
from services.campaign_service import CampaignService

router = APIRouter(prefix="/api/newsletter", tags=["newsletter"])


@router.post("/subscribe")
async def subscribe(
    request: NewsletterSubscribeRequest,
    db: Session = Depends(get_db),
    campaigns: CampaignService = Depends(get_campaign_service)
):
    subscriber = campaigns.subscribe(db, request.email)
    return {"success": True, "message": "Subscribed successfully", "email": subscriber.email}
