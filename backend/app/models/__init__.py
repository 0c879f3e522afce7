from .tenancy import Store, StoreConfig
from .inventory import Product, ProductVariation, ProductPriceTier, StockMovement
from .orders import Order, OrderPayment, OrderEvent

__all__ = [
    'Store', 'StoreConfig',
    'Product', 'ProductVariation', 'ProductPriceTier', 'StockMovement',
    'Order', 'OrderPayment', 'OrderEvent',
]
