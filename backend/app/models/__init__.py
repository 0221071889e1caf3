from .auth import User, SessionToken
from .catalog import Product, Topping
from .cart import CartItem
from .vouchers import Voucher, SavedVoucher
from .orders import Order, OrderItem, OrderEvent

__all__ = [
    'User', 'SessionToken',
    'Product', 'Topping',
    'CartItem',
    'Voucher', 'SavedVoucher',
    'Order', 'OrderItem', 'OrderEvent',
]
