"""Store settings document and CMS pages."""
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from config import CURRENCY, SITE_NAME
from errors import BusinessRuleError, NotFoundError
from models import Page, Setting
from schemas import PageCreate, PageUpdate

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "site_name": SITE_NAME,
    "currency": CURRENCY,
    "contact_email": "",
    "maintenance_mode": False,
}


class ContentService:
    """Admin-managed settings and pages."""

    def get_settings(self, db: Session) -> Dict[str, Any]:
        settings = dict(DEFAULT_SETTINGS)
        settings.update({row.key: row.value for row in db.query(Setting).all()})
        return settings

    def update_settings(self, db: Session, values: Dict[str, Any]) -> Dict[str, Any]:
        """Merge the given keys into the settings document."""
        for key, value in values.items():
            setting = db.get(Setting, key)
            if setting is None:
                db.add(Setting(key=key, value=value))
            else:
                setting.value = value
        db.commit()

        logger.info("Settings updated", extra={"keys": sorted(values)})
        return self.get_settings(db)

    def list_pages(self, db: Session) -> List[Page]:
        return db.query(Page).order_by(Page.slug).all()

    def get_page(self, db: Session, page_id: int) -> Page:
        page = db.get(Page, page_id)
        if page is None:
            raise NotFoundError("Page not found")
        return page

    def create_page(self, db: Session, payload: PageCreate) -> Page:
        if db.query(Page.id).filter(Page.slug == payload.slug).first() is not None:
            raise BusinessRuleError("A page with this slug already exists")
        page = Page(**payload.model_dump())
        db.add(page)
        db.commit()
        db.refresh(page)
        return page

    def update_page(self, db: Session, page_id: int, payload: PageUpdate) -> Page:
        page = self.get_page(db, page_id)
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(page, field, value)
        db.commit()
        db.refresh(page)
        return page

    def delete_page(self, db: Session, page_id: int) -> None:
        page = self.get_page(db, page_id)
        db.delete(page)
        db.commit()
