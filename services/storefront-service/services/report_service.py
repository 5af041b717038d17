"""Back-office aggregates: dashboard, sales/product/customer reports and the customer list."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List

from opentelemetry import trace
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Order, OrderItem, OrderStatus, PaymentStatus, Product, User
from services.pricing import round_money

logger = logging.getLogger(__name__)


class ReportService:
    """Read-only aggregation queries for administrators."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def dashboard_stats(self, db: Session, recent_limit: int = 5) -> Dict[str, Any]:
        with self.tracer.start_as_current_span("db.query.dashboard_stats"):
            revenue = db.query(func.coalesce(func.sum(Order.total), 0.0)).filter(
                Order.payment_status == PaymentStatus.PAID
            ).scalar()
            stats = {
                "total_revenue": round_money(revenue or 0.0),
                "total_orders": db.query(func.count(Order.id)).scalar(),
                "total_customers": db.query(func.count(User.id)).filter(User.role == "customer").scalar(),
                "total_products": db.query(func.count(Product.id)).filter(Product.is_active.is_(True)).scalar(),
                "low_stock_products": db.query(func.count(Product.id)).filter(
                    Product.is_active.is_(True), Product.stock <= Product.low_stock_threshold
                ).scalar(),
                "pending_orders": db.query(func.count(Order.id)).filter(
                    Order.order_status == OrderStatus.PENDING
                ).scalar(),
            }
            recent = (
                db.query(Order)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .limit(recent_limit)
                .all()
            )

        stats["recent_orders"] = [
            {
                "id": order.id,
                "order_number": order.order_number,
                "total": order.total,
                "order_status": order.order_status,
                "payment_status": order.payment_status,
                "created_at": order.created_at,
            }
            for order in recent
        ]
        return stats

    def sales_report(self, db: Session, days: int = 30) -> Dict[str, Any]:
        """Daily revenue and order counts of non-cancelled orders over the last `days` days."""
        since = datetime.utcnow() - timedelta(days=days)
        day = func.date(Order.created_at)
        with self.tracer.start_as_current_span("db.query.sales_report") as db_span:
            db_span.set_attribute("report.days", days)
            rows = (
                db.query(day.label("day"), func.count(Order.id), func.sum(Order.total))
                .filter(Order.created_at >= since, Order.order_status != OrderStatus.CANCELLED)
                .group_by(day)
                .order_by(day)
                .all()
            )

        daily = [
            {"date": str(row[0]), "orders": row[1], "revenue": round_money(row[2] or 0.0)}
            for row in rows
        ]
        return {
            "days": days,
            "daily": daily,
            "total_orders": sum(entry["orders"] for entry in daily),
            "total_revenue": round_money(sum(entry["revenue"] for entry in daily)),
        }

    def product_report(self, db: Session, limit: int = 10) -> List[Dict[str, Any]]:
        """Best sellers by units, with the revenue they brought in."""
        units = func.sum(OrderItem.quantity)
        rows = (
            db.query(
                OrderItem.product_id,
                func.max(OrderItem.name),
                units.label("units"),
                func.sum(OrderItem.price * OrderItem.quantity),
            )
            .join(Order, OrderItem.order_id == Order.id)
            .filter(Order.order_status != OrderStatus.CANCELLED)
            .group_by(OrderItem.product_id)
            .order_by(units.desc())
            .limit(limit)
            .all()
        )
        return [
            {"product_id": row[0], "name": row[1], "units_sold": int(row[2] or 0), "revenue": round_money(row[3] or 0.0)}
            for row in rows
        ]

    def customer_report(self, db: Session, limit: int = 10) -> List[Dict[str, Any]]:
        """Top customers by spend on non-cancelled orders."""
        spent = func.sum(Order.total)
        rows = (
            db.query(User.id, User.name, User.email, func.count(Order.id), spent.label("spent"))
            .join(Order, Order.user_id == User.id)
            .filter(Order.order_status != OrderStatus.CANCELLED)
            .group_by(User.id, User.name, User.email)
            .order_by(spent.desc())
            .limit(limit)
            .all()
        )
        return [
            {"user_id": row[0], "name": row[1], "email": row[2], "orders": row[3], "total_spent": round_money(row[4] or 0.0)}
            for row in rows
        ]

    def list_customers(self, db: Session, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Customers with their order count and total spent, newest first."""
        base = db.query(User).filter(User.role == "customer")
        total_count = base.count()
        rows = (
            db.query(User, func.count(Order.id), func.coalesce(func.sum(Order.total), 0.0))
            .outerjoin(Order, Order.user_id == User.id)
            .filter(User.role == "customer")
            .group_by(User.id)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        customers = [
            {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "phone": user.phone,
                "created_at": user.created_at,
                "order_count": order_count,
                "total_spent": round_money(total_spent or 0.0),
            }
            for user, order_count, total_spent in rows
        ]
        return {
            "customers": customers,
            "pagination": {
                "page": page,
                "limit": limit,
                "total_count": total_count,
                "total_pages": (total_count + limit - 1) // limit,
            },
        }
