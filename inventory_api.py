"""Inventory, stock movement and supplier endpoints."""
from flask import current_app, request
from sqlalchemy import or_

from api_helpers import apply_address, arg_bool, arg_int, get_or_404, paginate, parse_body, success
from errors import ValidationError
from inventory_service import (apply_stock_movement, average_daily_usage, dashboard_summary, expiring_items,
                               get_item, inventory_alert, low_stock_items)
from logging_config import get_logger
from models import Clinic, InventoryItem, StockMovement, Supplier, db
from schemas import InventoryItemCreate, InventoryItemUpdate, StockUpdate, SupplierCreate, SupplierRating, SupplierUpdate

logger = get_logger(__name__)


def register_inventory_routes(app):

    # ---------------- INVENTORY ----------------
    @app.route('/api/inventory')
    def api_list_inventory():
        query = InventoryItem.query.filter(InventoryItem.is_active.is_(True))
        clinic_id = arg_int('clinic_id')
        if clinic_id:
            query = query.filter_by(clinic_id=clinic_id)
        category = request.args.get('category')
        if category:
            query = query.filter_by(category=category)
        if arg_bool('low_stock'):
            query = query.filter(InventoryItem.is_low_stock.is_(True))
        search = request.args.get('search', '').strip()
        if search:
            pattern = f'%{search}%'
            query = query.filter(or_(InventoryItem.name.ilike(pattern),
                                     InventoryItem.sku.ilike(pattern),
                                     InventoryItem.description.ilike(pattern)))
        items, pagination = paginate(query.order_by(InventoryItem.name))
        return success([i.to_dict() for i in items], pagination=pagination)

    @app.route('/api/inventory', methods=['POST'])
    def api_create_inventory():
        body = parse_body(InventoryItemCreate)
        get_or_404(Clinic, body.clinic_id)
        if body.supplier_id:
            get_or_404(Supplier, body.supplier_id)
        item = InventoryItem(**body.model_dump())
        db.session.add(item)
        db.session.commit()
        logger.info("inventory_item_created", item_id=item.id, sku=item.sku, clinic_id=item.clinic_id)
        return success(item.to_dict(), 'Inventory item created successfully', 201)

    @app.route('/api/inventory/<int:item_id>')
    def api_get_inventory(item_id):
        return success(get_item(item_id).to_dict())

    @app.route('/api/inventory/<int:item_id>', methods=['PUT'])
    def api_update_inventory(item_id):
        item = get_item(item_id)
        changes = parse_body(InventoryItemUpdate).model_dump(exclude_unset=True)
        if changes.get('supplier_id'):
            get_or_404(Supplier, changes['supplier_id'])
        for field, value in changes.items():
            setattr(item, field, value)
        if item.maximum_stock is not None and item.maximum_stock < item.minimum_stock:
            raise ValidationError('maximum_stock must not be below minimum_stock', field='maximum_stock')
        db.session.commit()
        return success(item.to_dict(), 'Inventory item updated successfully')

    @app.route('/api/inventory/<int:item_id>', methods=['DELETE'])
    def api_delete_inventory(item_id):
        item = get_item(item_id)
        item.is_active = False
        db.session.commit()
        logger.info("inventory_item_deactivated", item_id=item.id)
        return success(None, 'Inventory item deleted successfully')

    @app.route('/api/inventory/<int:item_id>/stock', methods=['POST'])
    def api_update_stock(item_id):
        item = get_item(item_id)
        body = parse_body(StockUpdate)
        details = body.model_dump(exclude={'type', 'quantity', 'reason'}, exclude_none=True)
        movement = apply_stock_movement(item, body.type, body.quantity, reason=body.reason, **details)
        return success({'item': item.to_dict(), 'movement': movement.to_dict()}, 'Stock updated successfully')

    @app.route('/api/inventory/<int:item_id>/movements')
    def api_stock_movements(item_id):
        item = get_item(item_id)
        query = StockMovement.query.filter_by(inventory_item_id=item.id)
        movement_type = request.args.get('type')
        if movement_type:
            query = query.filter_by(type=movement_type)
        movements, pagination = paginate(query.order_by(StockMovement.performed_at.desc(), StockMovement.id.desc()))
        return success([m.to_dict() for m in movements], pagination=pagination)

    @app.route('/api/inventory/<int:item_id>/forecast')
    def api_restock_forecast(item_id):
        item = get_item(item_id)
        usage = average_daily_usage(item, days=arg_int('days', default=30, minimum=1, maximum=365))
        return success({
            'item_id': item.id,
            'current_stock': item.current_stock,
            'average_daily_usage': round(usage, 2),
            'restock_by': inventory_alert.predict_restock_date(item, usage),
        })

    @app.route('/api/inventory/low-stock')
    def api_low_stock():
        items = low_stock_items(arg_int('clinic_id'))
        return success([i.to_dict() for i in items])

    @app.route('/api/inventory/expiring')
    def api_expiring():
        days = arg_int('days', default=current_app.config['EXPIRY_WARNING_DAYS'], minimum=0, maximum=365)
        items = expiring_items(days, arg_int('clinic_id'))
        return success([i.to_dict() for i in items])

    @app.route('/api/inventory/alerts')
    def api_inventory_alerts():
        query = InventoryItem.query.filter(InventoryItem.is_active.is_(True))
        clinic_id = arg_int('clinic_id')
        if clinic_id:
            query = query.filter_by(clinic_id=clinic_id)
        alerts = inventory_alert.check_alerts(query.all(), expiry_days=current_app.config['EXPIRY_WARNING_DAYS'])
        return success({
            'alerts': alerts,
            'count': len(alerts),
            'critical': sum(1 for a in alerts if a['type'] == 'critical'),
        })

    @app.route('/api/inventory/dashboard')
    def api_inventory_dashboard():
        return success(dashboard_summary(arg_int('clinic_id')))

    # ---------------- SUPPLIERS ----------------
    @app.route('/api/suppliers')
    def api_list_suppliers():
        query = Supplier.query
        active = arg_bool('is_active')
        if active is not None:
            query = query.filter_by(is_active=active)
        search = request.args.get('search', '').strip()
        if search:
            pattern = f'%{search}%'
            query = query.filter(or_(Supplier.name.ilike(pattern),
                                     Supplier.contact_person.ilike(pattern),
                                     Supplier.email.ilike(pattern)))
        suppliers, pagination = paginate(query.order_by(Supplier.name))
        return success([s.to_dict() for s in suppliers], pagination=pagination)

    @app.route('/api/suppliers/active')
    def api_active_suppliers():
        suppliers = Supplier.query.filter_by(is_active=True).order_by(Supplier.name).all()
        return success([{'id': s.id, 'name': s.name, 'contact_person': s.contact_person} for s in suppliers])

    @app.route('/api/suppliers', methods=['POST'])
    def api_create_supplier():
        body = parse_body(SupplierCreate)
        supplier = Supplier(**body.model_dump(exclude={'address'}))
        apply_address(supplier, body.address)
        db.session.add(supplier)
        db.session.commit()
        logger.info("supplier_created", supplier_id=supplier.id)
        return success(supplier.to_dict(), 'Supplier created successfully', 201)

    @app.route('/api/suppliers/<int:supplier_id>')
    def api_get_supplier(supplier_id):
        supplier = get_or_404(Supplier, supplier_id)
        data = supplier.to_dict()
        data['items'] = [{'id': i.id, 'name': i.name, 'sku': i.sku} for i in supplier.items if i.is_active]
        return success(data)

    @app.route('/api/suppliers/<int:supplier_id>', methods=['PUT'])
    def api_update_supplier(supplier_id):
        supplier = get_or_404(Supplier, supplier_id)
        body = parse_body(SupplierUpdate)
        for field, value in body.model_dump(exclude_unset=True, exclude={'address'}).items():
            setattr(supplier, field, value)
        apply_address(supplier, body.address)
        db.session.commit()
        return success(supplier.to_dict(), 'Supplier updated successfully')

    @app.route('/api/suppliers/<int:supplier_id>', methods=['DELETE'])
    def api_delete_supplier(supplier_id):
        supplier = get_or_404(Supplier, supplier_id)
        supplier.is_active = False
        db.session.commit()
        logger.info("supplier_deactivated", supplier_id=supplier.id)
        return success(None, 'Supplier deleted successfully')

    @app.route('/api/suppliers/<int:supplier_id>/rating', methods=['PUT'])
    def api_rate_supplier(supplier_id):
        supplier = get_or_404(Supplier, supplier_id)
        supplier.rating = parse_body(SupplierRating).rating
        db.session.commit()
        return success(supplier.to_dict(), 'Supplier rating updated successfully')
