from .catalog import Warehouse, Brand, Factory, Product, CatalogueEntry
from .customers import PriceList, PriceListItem, Customer, CustomerProductPrice, CustomerBrandRule
from .inventory import InventoryRecord, InventoryTransaction
from .sales import Order, OrderItem, OrderItemAllocation
from .purchasing import PurchaseOrder, PurchaseOrderItem, GoodsReceipt, GoodsReceiptItem
from .documents import Return, ReturnItem, PurchaseReturn, PurchaseReturnItem, DocumentSequence
from .accounting import CashAccount, CashTransaction

__all__ = [
    'Warehouse', 'Brand', 'Factory', 'Product', 'CatalogueEntry',
    'PriceList', 'PriceListItem', 'Customer', 'CustomerProductPrice', 'CustomerBrandRule',
    'InventoryRecord', 'InventoryTransaction',
    'Order', 'OrderItem', 'OrderItemAllocation',
    'PurchaseOrder', 'PurchaseOrderItem', 'GoodsReceipt', 'GoodsReceiptItem',
    'Return', 'ReturnItem', 'PurchaseReturn', 'PurchaseReturnItem', 'DocumentSequence',
    'CashAccount', 'CashTransaction',
]
