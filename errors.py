"""Error kinds raised by the services and rendered by the HTTP edge."""


class StoreError(Exception):
    status_code = 400
    kind = "error"
    default_message = "Request failed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(StoreError):
    status_code = 404
    kind = "not_found"
    default_message = "Resource not found"


class Duplicate(StoreError):
    status_code = 409
    kind = "duplicate"
    default_message = "Resource already exists"


class InsufficientStock(StoreError):
    status_code = 409
    kind = "insufficient_stock"
    default_message = "Insufficient stock"


class InvalidState(StoreError):
    status_code = 409
    kind = "invalid_state"
    default_message = "Invalid state"


class ValidationFailed(StoreError):
    status_code = 400
    kind = "validation_failed"
    default_message = "Validation error"


class Unauthorized(StoreError):
    status_code = 401
    kind = "unauthorized"
    default_message = "Authentication required"


class Forbidden(StoreError):
    status_code = 403
    kind = "forbidden"
    default_message = "You do not have permission to access this resource"


# Named failures

class ProductNotFound(NotFound):
    default_message = "Product not found"


class UserNotFound(NotFound):
    default_message = "User not found"


class OrderNotFound(NotFound):
    default_message = "Order not found"


class AddressNotFound(NotFound):
    default_message = "Address not found"


class ItemNotInCart(NotFound):
    default_message = "Item not found in cart"


class DuplicateSKU(Duplicate):
    default_message = "Product with this SKU already exists"


class DuplicateEmail(Duplicate):
    default_message = "User already exists"


class EmptyOrder(ValidationFailed):
    default_message = "Order must contain at least one item"


class InvalidId(ValidationFailed):
    default_message = "Invalid id"


class InvalidStatus(InvalidState):
    pass


class InvalidTransition(InvalidState):
    pass


class CannotCancel(InvalidState):
    default_message = "Cannot cancel this order"
