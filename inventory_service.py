"""
Inventory stock keeping for the clinic
- Stock movements (in / out / adjustment) applied transactionally
- Low stock, out of stock and expiry alerts
- Dashboard summary per category
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func

from errors import NotFoundError, ValidationError
from logging_config import get_logger
from models import InventoryItem, StockMovement, db, utc_now

logger = get_logger(__name__)

DEFAULT_REASONS = {'in': 'purchase', 'out': 'usage', 'adjustment': 'adjustment'}


def get_item(item_id) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise NotFoundError('Inventory item')
    return item


def apply_stock_movement(item: InventoryItem, movement_type: str, quantity: int,
                         reason: Optional[str] = None, performed_by=None, **details) -> StockMovement:
    """
    Change an item's stock and record the movement in one commit.

    For ``adjustment`` the quantity is the new stock level and the recorded
    movement quantity is the size of the change.

    Raises:
        ValidationError: unknown type, non-positive quantity, removing more
            than is in stock, or an adjustment that changes nothing
    """
    if movement_type not in DEFAULT_REASONS:
        raise ValidationError('Invalid stock movement type', field='type')
    if quantity is None or quantity <= 0:
        raise ValidationError('Quantity must be greater than 0', field='quantity')

    previous = item.current_stock
    if movement_type == 'in':
        new_stock = previous + quantity
    elif movement_type == 'out':
        if quantity > previous:
            raise ValidationError('Cannot remove more stock than available', field='quantity')
        new_stock = previous - quantity
    else:
        new_stock = quantity
        if new_stock == previous:
            raise ValidationError(f'Stock is already at {previous} {item.unit}', field='quantity')

    now = utc_now()
    movement = StockMovement(
        inventory_item_id=item.id,
        clinic_id=item.clinic_id,
        type=movement_type,
        quantity=abs(new_stock - previous) if movement_type == 'adjustment' else quantity,
        previous_stock=previous,
        new_stock=new_stock,
        reason=reason or DEFAULT_REASONS[movement_type],
        performed_by=performed_by,
        performed_at=now,
        **details,
    )

    item.current_stock = new_stock
    item.refresh_low_stock()
    if movement_type == 'in':
        item.last_restocked = now
    elif movement_type == 'out':
        item.last_used = now

    try:
        db.session.add(movement)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("stock_movement", item_id=item.id, sku=item.sku, type=movement_type,
                previous_stock=previous, new_stock=new_stock)
    return movement


def low_stock_items(clinic_id=None) -> List[InventoryItem]:
    query = InventoryItem.query.filter(InventoryItem.is_active.is_(True),
                                       InventoryItem.current_stock <= InventoryItem.minimum_stock)
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    return query.order_by(InventoryItem.current_stock.asc()).all()


def expiring_items(days: int = 30, clinic_id=None, today: Optional[date] = None) -> List[InventoryItem]:
    """Active items whose expiry date falls within ``days`` (already expired included)."""
    today = today or date.today()
    query = InventoryItem.query.filter(InventoryItem.is_active.is_(True),
                                       InventoryItem.expiry_date.isnot(None),
                                       InventoryItem.expiry_date <= today + timedelta(days=days))
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    return query.order_by(InventoryItem.expiry_date.asc()).all()


def average_daily_usage(item: InventoryItem, days: int = 30) -> float:
    since = utc_now() - timedelta(days=days)
    used = (db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
            .filter(StockMovement.inventory_item_id == item.id,
                    StockMovement.type == 'out',
                    StockMovement.performed_at >= since)
            .scalar())
    return used / days


class InventoryAlertSystem:
    """Inventory management and alerts"""

    def __init__(self, expiry_days: int = 30):
        self.expiry_days = expiry_days

    def check_alerts(self, items: List[InventoryItem], today: Optional[date] = None,
                     expiry_days: Optional[int] = None) -> List[Dict]:
        """Critical for out of stock, warning for low stock or expiring soon."""
        window = self.expiry_days if expiry_days is None else expiry_days
        today = today or date.today()
        alerts = []

        for item in items:
            if item.current_stock <= 0:
                alerts.append(self._alert(item, 'critical', 'out_of_stock', 'high',
                                          f'CRITICAL: {item.name} is out of stock'))
            elif item.current_stock <= item.minimum_stock:
                alerts.append(self._alert(item, 'warning', 'low_stock', 'medium',
                                          f'WARNING: {item.name} is running low '
                                          f'({item.current_stock} {item.unit} remaining)'))

            days_left = item.days_until_expiry(today)
            if days_left is not None and days_left <= window:
                if days_left < 0:
                    message = f'{item.name} expired {-days_left} day(s) ago'
                    level, priority = 'critical', 'high'
                else:
                    message = f'{item.name} expires in {days_left} day(s)'
                    level, priority = 'warning', 'medium'
                alerts.append(self._alert(item, level, 'expiring', priority, message,
                                          days_until_expiry=days_left))

        alerts.sort(key=lambda a: (a['type'] != 'critical', a['item_name']))
        return alerts

    @staticmethod
    def _alert(item, level, kind, priority, message, **extra):
        alert = {
            'type': level,
            'category': kind,
            'item_id': item.id,
            'item_name': item.name,
            'sku': item.sku,
            'clinic_id': item.clinic_id,
            'current_stock': item.current_stock,
            'minimum_stock': item.minimum_stock,
            'message': message,
            'priority': priority,
        }
        alert.update(extra)
        return alert

    def predict_restock_date(self, item: InventoryItem, daily_usage: float) -> Optional[str]:
        """Date the item falls to its minimum stock at the given usage rate."""
        if daily_usage <= 0:
            return None
        days_remaining = max(item.current_stock - item.minimum_stock, 0) / daily_usage
        restock_date = datetime.now() + timedelta(days=int(days_remaining))
        return restock_date.strftime('%Y-%m-%d')


def dashboard_summary(clinic_id=None) -> Dict:
    """Totals and per-category breakdown of active stock."""
    query = InventoryItem.query.filter(InventoryItem.is_active.is_(True))
    if clinic_id:
        query = query.filter_by(clinic_id=clinic_id)
    items = query.all()

    categories = {}
    for item in items:
        entry = categories.setdefault(item.category, {
            'category': item.category, 'items': 0, 'total_value': 0.0,
            'low_stock': 0, 'out_of_stock': 0,
        })
        entry['items'] += 1
        entry['total_value'] += item.current_stock * (item.cost_price or 0)
        if item.current_stock <= 0:
            entry['out_of_stock'] += 1
        elif item.current_stock <= item.minimum_stock:
            entry['low_stock'] += 1

    for entry in categories.values():
        entry['total_value'] = round(entry['total_value'], 2)

    by_category = sorted(categories.values(), key=lambda e: e['category'])
    return {
        'total_items': len(items),
        'total_value': round(sum(e['total_value'] for e in by_category), 2),
        'low_stock': sum(e['low_stock'] for e in by_category),
        'out_of_stock': sum(e['out_of_stock'] for e in by_category),
        'by_category': by_category,
    }


# Global instance
inventory_alert = InventoryAlertSystem()
