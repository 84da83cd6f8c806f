from orderflow.models.order import Order, OrderItem, OrderStatus, OrderStatusChange
from orderflow.models.restaurant import MenuItem, Restaurant

__all__ = ["Order", "OrderItem", "OrderStatus", "OrderStatusChange", "MenuItem", "Restaurant"]
