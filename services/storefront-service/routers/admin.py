"""Admin back office: dashboard, settings, CMS pages, campaigns and review moderation.

Every route requires the admin role.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import Principal, require_admin
from database import get_db
from dependencies import get_campaign_service, get_content_service, get_report_service, get_review_service
from schemas import (
    CampaignCreate,
    CampaignResponse,
    CampaignUpdate,
    PageCreate,
    PageResponse,
    PageUpdate,
    ReviewModerate,
    ReviewResponse,
    SettingsUpdate,
)
from services.campaign_service import CampaignService
from services.content_service import ContentService
from services.report_service import ReportService
from services.review_service import ReviewService

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/dashboard/stats")
async def dashboard_stats(db: Session = Depends(get_db), reports: ReportService = Depends(get_report_service)):
    return {"success": True, "stats": reports.dashboard_stats(db)}


# Settings

@router.get("/settings")
async def get_settings(db: Session = Depends(get_db), content: ContentService = Depends(get_content_service)):
    return {"success": True, "settings": content.get_settings(db)}


@router.put("/settings")
async def update_settings(
    request: SettingsUpdate,
    db: Session = Depends(get_db),
    content: ContentService = Depends(get_content_service)
):
    return {"success": True, "settings": content.update_settings(db, request.values)}


# Pages

@router.get("/pages")
async def list_pages(db: Session = Depends(get_db), content: ContentService = Depends(get_content_service)):
    return {"success": True, "pages": [PageResponse.model_validate(page) for page in content.list_pages(db)]}


@router.post("/pages", status_code=201)
async def create_page(
    request: PageCreate,
    db: Session = Depends(get_db),
    content: ContentService = Depends(get_content_service)
):
    return {"success": True, "page": PageResponse.model_validate(content.create_page(db, request))}


@router.get("/pages/{page_id}")
async def get_page(page_id: int, db: Session = Depends(get_db), content: ContentService = Depends(get_content_service)):
    return {"success": True, "page": PageResponse.model_validate(content.get_page(db, page_id))}


@router.put("/pages/{page_id}")
async def update_page(
    page_id: int,
    request: PageUpdate,
    db: Session = Depends(get_db),
    content: ContentService = Depends(get_content_service)
):
    return {"success": True, "page": PageResponse.model_validate(content.update_page(db, page_id, request))}


@router.delete("/pages/{page_id}")
async def delete_page(page_id: int, db: Session = Depends(get_db), content: ContentService = Depends(get_content_service)):
    content.delete_page(db, page_id)
    return {"success": True, "message": "Page deleted successfully"}


# Campaigns

@router.get("/campaigns")
async def list_campaigns(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    campaigns: CampaignService = Depends(get_campaign_service)
):
    items = campaigns.list_campaigns(db, status=status)
    return {"success": True, "campaigns": [CampaignResponse.model_validate(campaign) for campaign in items]}


@router.post("/campaigns", status_code=201)
async def create_campaign(
    request: CampaignCreate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
    campaigns: CampaignService = Depends(get_campaign_service)
):
    campaign = campaigns.create(db, request, admin)
    return {"success": True, "campaign": CampaignResponse.model_validate(campaign)}


@router.get("/campaigns/{campaign_id}")
async def get_campaign(
    campaign_id: int,
    db: Session = Depends(get_db),
    campaigns: CampaignService = Depends(get_campaign_service)
):
    return {"success": True, "campaign": CampaignResponse.model_validate(campaigns.get(db, campaign_id))}


@router.put("/campaigns/{campaign_id}")
async def update_campaign(
    campaign_id: int,
    request: CampaignUpdate,
    db: Session = Depends(get_db),
    campaigns: CampaignService = Depends(get_campaign_service)
):
    campaign = campaigns.update(db, campaign_id, request)
    return {"success": True, "campaign": CampaignResponse.model_validate(campaign)}


@router.delete("/campaigns/{campaign_id}")
async def delete_campaign(
    campaign_id: int,
    db: Session = Depends(get_db),
    campaigns: CampaignService = Depends(get_campaign_service)
):
    campaigns.delete(db, campaign_id)
    return {"success": True, "message": "Campaign deleted successfully"}


@router.post("/campaigns/{campaign_id}/send")
async def send_campaign(
    campaign_id: int,
    db: Session = Depends(get_db),
    campaigns: CampaignService = Depends(get_campaign_service)
):
    """Send now; the request returns once every batch has been attempted."""
    campaign = await campaigns.send_campaign(db, campaign_id)
    return {
        "success": True,
        "message": f"Campaign sent to {campaign.success_count} recipients",
        "campaign": CampaignResponse.model_validate(campaign),
    }


# Reviews

@router.get("/reviews")
async def list_reviews(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    reviews: ReviewService = Depends(get_review_service)
):
    items = reviews.list_reviews(db, status=status)
    return {"success": True, "reviews": [ReviewResponse.model_validate(review) for review in items]}


@router.put("/reviews/{review_id}")
async def moderate_review(
    review_id: int,
    request: ReviewModerate,
    db: Session = Depends(get_db),
    reviews: ReviewService = Depends(get_review_service)
):
    review = reviews.moderate(db, review_id, request.status)
    return {"success": True, "review": ReviewResponse.model_validate(review)}


@router.delete("/reviews/{review_id}")
async def delete_review(review_id: int, db: Session = Depends(get_db), reviews: ReviewService = Depends(get_review_service)):
    reviews.delete(db, review_id)
    return {"success": True, "message": "Review deleted successfully"}
