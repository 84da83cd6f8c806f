"""
OrderFlow — Domain errors

Raised by the services layer, rendered by the exception handlers in main.py
into the {success, message, data} envelope.
"""


class OrderFlowError(Exception):
    status_code = 500
    default_message = "Internal error."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(OrderFlowError):
    """Malformed or empty cart, unknown menu item, missing address fields."""
    status_code = 400
    default_message = "Invalid order data."


class ForbiddenError(OrderFlowError):
    status_code = 403
    default_message = "Not authorized to perform this action on the order."


class NotFoundError(OrderFlowError):
    status_code = 404
    default_message = "Order not found."


class ConflictError(OrderFlowError):
    """Assignment race lost: the order was claimed by another partner."""
    status_code = 409
    default_message = "Order is already assigned to a delivery partner."


class InvalidTransitionError(OrderFlowError):
    status_code = 409
    default_message = "Invalid status transition."
