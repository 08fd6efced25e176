"""Custom exceptions for the supplier dispatch portal."""


class PortalError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @property
    def code(self):
        return type(self).__name__

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['code'] = self.code
        rv['status'] = 'error'
        return rv


class BusinessLogicError(PortalError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(PortalError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class OrderNotEditable(BusinessLogicError):
    """Raised when a dispatch order is no longer in an editable status."""
    def __init__(self, order_id, status):
        message = f"Only pending dispatch orders can be edited. Order {order_id} is '{status}'."
        super().__init__(message, status_code=409, payload={'order_id': order_id, 'order_status': status})


class AllocationExceeded(BusinessLogicError):
    """Raised when packet contents would exceed the item's declared quantity."""
    def __init__(self, declared, attempted, item_name=None):
        self.declared = declared
        self.attempted = attempted
        label = f' for "{item_name}"' if item_name else ''
        message = (
            f"You cannot configure more than {declared} items{label}. "
            f"Packets would hold {attempted}; reduce quantities in packets."
        )
        super().__init__(message, status_code=409, payload={'declared': declared, 'attempted': attempted})


class ValidationViolation(PortalError):
    """
    A submission-time rule violation.

    Violations are collected and reported together, so they carry the
    offending field (and item position when relevant) for the caller.
    """
    def __init__(self, message, field=None, item_index=None, payload=None):
        self.field = field
        self.item_index = item_index
        data = dict(payload or ())
        if field is not None:
            data['field'] = field
        if item_index is not None:
            data['item_index'] = item_index
        super().__init__(message, 422, data)


class MissingField(ValidationViolation):
    """A required draft field is empty."""
    def __init__(self, field, message=None):
        super().__init__(message or f"{field} is required", field=field)


class BoxCountRequired(ValidationViolation):
    """Raised when the order has no shipping boxes."""
    def __init__(self):
        super().__init__("You must specify at least one box to create an order", field='box_count')


class QuantityMismatch(ValidationViolation):
    """Packet allocation does not add up to the item's declared quantity."""
    def __init__(self, configured, declared, item_name=None, item_code=None, item_index=None):
        self.configured = configured
        self.declared = declared
        self.deficit = max(declared - configured, 0)
        self.surplus = max(configured - declared, 0)
        if item_name or item_code:
            label = f'"{item_name}" ({item_code}): ' if item_code else f'"{item_name}": '
        else:
            label = ''
        if self.deficit:
            detail = f"{self.deficit} unit(s) not assigned"
        else:
            detail = f"{self.surplus} unit(s) over the quantity"
        message = f"{label}Configured {configured} of {declared} units ({detail})"
        super().__init__(
            message,
            field='packets',
            item_index=item_index,
            payload={
                'configured': configured,
                'declared': declared,
                'deficit': self.deficit,
                'surplus': self.surplus,
            },
        )


class DiscountOutOfRange(ValidationViolation):
    """A discount value outside the accepted range, or not a number at all."""
    def __init__(self, value, discount_type, message=None):
        if message is None:
            if discount_type == 'percent' and value > 0:
                message = "Discount percentage cannot exceed 100%"
            else:
                message = "Discount cannot be negative"
        super().__init__(message, field='discount', payload={'value': str(value)})


class DiscountExceedsTotal(ValidationViolation):
    """The computed discount is larger than the grand total."""
    def __init__(self, amount, ceiling):
        self.amount = amount
        self.ceiling = ceiling
        message = f"Discount amount ({amount:.2f}) cannot exceed the grand total ({ceiling:.2f})"
        super().__init__(message, field='discount', payload={'amount': str(amount), 'ceiling': str(ceiling)})


class PersistenceFailed(PortalError):
    """The order store rejected the order; nothing was created or updated."""
    def __init__(self, reason):
        self.reason = str(reason)
        super().__init__(f"Failed to save dispatch order: {self.reason}", 502)


class ImageUploadFailed(PortalError):
    """A single image upload failed. The order itself is already persisted."""
    def __init__(self, file_name, reason, item_index=None, image_index=None):
        self.file_name = file_name
        self.reason = str(reason)
        self.item_index = item_index
        self.image_index = image_index
        if item_index is not None and image_index is not None:
            message = f"Product {item_index + 1}, Image {image_index + 1} ({file_name}): {self.reason}"
        else:
            message = f"{file_name}: {self.reason}"
        super().__init__(message, 502, {
            'file_name': file_name,
            'item_index': item_index,
            'image_index': image_index,
        })
