"""
Per-product column configuration.

A tenant's products have no table of their own: a product exists when
column configurations exist for it.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from exceptions import ConflictError, DatabaseError, NotFoundError, ValidationError
from utils import get_ist_timestamp

logger = logging.getLogger(__name__)

DATA_TYPES = ('text', 'number', 'date', 'phone', 'currency', 'email', 'url')

COLUMN_NAME_REGEX = re.compile(r'^[A-Za-z][A-Za-z0-9_]*$')


@dataclass
class ColumnDefinition:
    """One configurable column of the case table"""
    column_name: str
    display_name: str
    data_type: str = 'text'
    is_active: bool = True
    is_custom: bool = False
    column_order: int = 0


DEFAULT_COLUMNS = [
    ColumnDefinition('customerName', 'Customer Name', 'text', column_order=1),
    ColumnDefinition('loanId', 'Loan ID', 'text', column_order=2),
    ColumnDefinition('loanAmount', 'Loan Amount', 'currency', column_order=3),
    ColumnDefinition('mobileNo', 'Mobile No', 'phone', column_order=4),
    ColumnDefinition('dpd', 'DPD', 'number', column_order=5),
    ColumnDefinition('outstandingAmount', 'Outstanding Amount', 'currency', column_order=6),
    ColumnDefinition('posAmount', 'POS Amount', 'currency', column_order=7),
    ColumnDefinition('emiAmount', 'EMI Amount', 'currency', column_order=8),
    ColumnDefinition('pendingDues', 'Pending Dues', 'currency', column_order=9),
    ColumnDefinition('address', 'Address', 'text', column_order=10),
    ColumnDefinition('sanctionDate', 'Sanction Date', 'date', column_order=11),
    ColumnDefinition('lastPaidAmount', 'Last Paid Amount', 'currency', column_order=12),
    ColumnDefinition('lastPaidDate', 'Last Paid Date', 'date', column_order=13),
    ColumnDefinition('paymentLink', 'Payment Link', 'url', column_order=14),
    ColumnDefinition('branchName', 'Branch Name', 'text', column_order=15),
    ColumnDefinition('loanType', 'Loan Type', 'text', column_order=16),
    ColumnDefinition('remarks', 'Remarks', 'text', is_active=False, column_order=17),
]


class ColumnConfigService:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_column_configurations(self, tenant_id: str, product_name: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.supabase.table('column_configurations').select('*').eq('tenant_id', tenant_id)
        if product_name:
            query = query.eq('product_name', product_name)
        result = query.order('column_order').execute()
        return result.data or []

    def get_active_column_configurations(self, tenant_id: str,
                                         product_name: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.supabase.table('column_configurations').select('*') \
            .eq('tenant_id', tenant_id).eq('is_active', True)
        if product_name:
            query = query.eq('product_name', product_name)
        result = query.order('column_order').execute()
        return result.data or []

    def get_upload_columns(self, tenant_id: str, product_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active columns for a product, or the default set when none are configured."""
        columns = self.get_active_column_configurations(tenant_id, product_name)
        if columns:
            return columns
        return [asdict(c) for c in DEFAULT_COLUMNS if c.is_active]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _validate_columns(self, columns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not columns:
            raise ValidationError('At least one column is required')

        seen = set()
        cleaned = []
        for order, column in enumerate(columns, start=1):
            column_name = (column.get('column_name') or '').strip()
            display_name = (column.get('display_name') or '').strip()
            data_type = column.get('data_type') or 'text'

            if not column_name:
                raise ValidationError(f'Column {order}: column name is required')
            if not display_name:
                raise ValidationError(f'Column {column_name}: display name is required')
            if column_name in seen:
                raise ValidationError(f'Duplicate column name: {column_name}')
            if data_type not in DATA_TYPES:
                raise ValidationError(f'Column {column_name}: invalid data type {data_type}')
            seen.add(column_name)

            cleaned.append({
                'column_name': column_name,
                'display_name': display_name,
                'data_type': data_type,
                'is_active': bool(column.get('is_active', True)),
                'is_custom': bool(column.get('is_custom', False)),
                'column_order': order,
            })
        return cleaned

    def save_column_configurations(self, tenant_id: str, product_name: str,
                                   columns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace a product's configuration with ``columns`` in the given order."""
        product_name = (product_name or '').strip()
        if not product_name:
            raise ValidationError('Product name is required')

        cleaned = self._validate_columns(columns)

        try:
            self.supabase.table('column_configurations').delete() \
                .eq('tenant_id', tenant_id).eq('product_name', product_name).execute()
        except Exception as e:
            logger.error(f"❌ Error deleting old configurations: {e}")
            raise DatabaseError('Failed to delete old configurations')

        rows = [dict(column, tenant_id=tenant_id, product_name=product_name) for column in cleaned]
        try:
            result = self.supabase.table('column_configurations').insert(rows).execute()
        except Exception as e:
            logger.error(f"❌ Error saving column configurations: {e}")
            raise DatabaseError('Failed to save column configurations')

        logger.info(f"🧩 Saved {len(rows)} column(s) for product {product_name} (tenant {tenant_id})")
        return result.data or []

    def initialize_default_columns(self, tenant_id: str, product_name: str) -> bool:
        """Seed the default columns. Returns False when the product already has a configuration."""
        existing = self.get_column_configurations(tenant_id, product_name)
        if existing:
            return False
        self.save_column_configurations(tenant_id, product_name, [asdict(c) for c in DEFAULT_COLUMNS])
        return True

    def add_custom_column(self, tenant_id: str, product_name: str, column_name: str,
                          display_name: str, data_type: str = 'text', is_active: bool = True) -> List[Dict[str, Any]]:
        column_name = (column_name or '').strip()
        if not COLUMN_NAME_REGEX.match(column_name):
            raise ValidationError('Column name must start with a letter and contain only letters, numbers and underscores')

        columns = self.get_column_configurations(tenant_id, product_name)
        if not columns:
            raise NotFoundError(f'Product {product_name} not found')
        if any(c['column_name'] == column_name for c in columns):
            raise ConflictError(f'Column {column_name} already exists')

        columns.append({
            'column_name': column_name,
            'display_name': display_name,
            'data_type': data_type,
            'is_active': is_active,
            'is_custom': True,
        })
        return self.save_column_configurations(tenant_id, product_name, columns)

    def remove_custom_column(self, tenant_id: str, product_name: str, column_name: str) -> List[Dict[str, Any]]:
        columns = self.get_column_configurations(tenant_id, product_name)
        target = next((c for c in columns if c['column_name'] == column_name), None)
        if not target:
            raise NotFoundError(f'Column {column_name} not found')
        if not target.get('is_custom'):
            raise ValidationError('Default columns cannot be removed, deactivate them instead')
        return self.save_column_configurations(
            tenant_id, product_name, [c for c in columns if c['column_name'] != column_name]
        )

    def update_column(self, tenant_id: str, product_name: str, column_name: str,
                      display_name: Optional[str] = None, is_active: Optional[bool] = None) -> Dict[str, Any]:
        updates = {}
        if display_name is not None:
            if not display_name.strip():
                raise ValidationError('Display name is required')
            updates['display_name'] = display_name.strip()
        if is_active is not None:
            updates['is_active'] = bool(is_active)
        if not updates:
            raise ValidationError('No valid fields to update')
        updates['updated_at'] = get_ist_timestamp()

        result = self.supabase.table('column_configurations').update(updates) \
            .eq('tenant_id', tenant_id).eq('product_name', product_name).eq('column_name', column_name).execute()
        if not result.data:
            raise NotFoundError(f'Column {column_name} not found')
        return result.data[0]

    def toggle_column(self, tenant_id: str, product_name: str, column_name: str) -> Dict[str, Any]:
        column = next(
            (c for c in self.get_column_configurations(tenant_id, product_name) if c['column_name'] == column_name),
            None,
        )
        if not column:
            raise NotFoundError(f'Column {column_name} not found')
        return self.update_column(tenant_id, product_name, column_name, is_active=not column.get('is_active'))

    def rename_column(self, tenant_id: str, product_name: str, column_name: str, display_name: str) -> Dict[str, Any]:
        return self.update_column(tenant_id, product_name, column_name, display_name=display_name or '')

    def delete_product_configurations(self, tenant_id: str, product_name: str) -> None:
        try:
            self.supabase.table('column_configurations').delete() \
                .eq('tenant_id', tenant_id).eq('product_name', product_name).execute()
        except Exception as e:
            logger.error(f"❌ Error deleting product configurations: {e}")
            raise DatabaseError('Failed to delete product configurations')

    def clear_all_column_configurations(self, tenant_id: str) -> None:
        try:
            self.supabase.table('column_configurations').delete().eq('tenant_id', tenant_id).execute()
        except Exception as e:
            logger.error(f"❌ Error clearing column configurations: {e}")
            raise DatabaseError('Failed to clear all column configurations')
        logger.info(f"🧹 Cleared all column configurations for tenant {tenant_id}")

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def list_products(self, tenant_id: str) -> List[str]:
        products = []
        for config in self.get_column_configurations(tenant_id):
            name = config.get('product_name')
            if name and name not in products:
                products.append(name)
        return products

    def add_product(self, tenant_id: str, product_name: str) -> str:
        name = (product_name or '').strip()
        if not name:
            raise ValidationError('Product name is required')
        if name in self.list_products(tenant_id):
            raise ConflictError('Product already exists')
        self.initialize_default_columns(tenant_id, name)
        logger.info(f"📦 Product added: {name} (tenant {tenant_id})")
        return name

    def rename_product(self, tenant_id: str, old_name: str, new_name: str) -> str:
        new_name = (new_name or '').strip()
        if not new_name:
            raise ValidationError('Product name is required')

        products = self.list_products(tenant_id)
        if old_name not in products:
            raise NotFoundError(f'Product {old_name} not found')
        if new_name == old_name:
            return new_name
        if new_name in products:
            raise ConflictError('Product already exists')

        now = get_ist_timestamp()
        for table in ('column_configurations', 'teams', 'customer_cases'):
            self.supabase.table(table).update({'product_name': new_name, 'updated_at': now}) \
                .eq('tenant_id', tenant_id).eq('product_name', old_name).execute()

        logger.info(f"📦 Product renamed: {old_name} -> {new_name} (tenant {tenant_id})")
        return new_name

    def delete_product(self, tenant_id: str, product_name: str) -> None:
        if product_name not in self.list_products(tenant_id):
            raise NotFoundError(f'Product {product_name} not found')
        self.delete_product_configurations(tenant_id, product_name)
        logger.info(f"📦 Product deleted: {product_name} (tenant {tenant_id})")
