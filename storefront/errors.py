from typing import Dict, Optional


class StorefrontError(ValueError):
    """A rejected storefront action.

    The message is user-facing. Routers turn it into an ``HTTPException``
    with ``status_code`` and the message as detail.
    """

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class CartError(StorefrontError):
    status_code = 409


class CheckoutError(StorefrontError):
    pass


class ValidationFailed(CheckoutError):
    """Order form validation failed; ``fields`` maps field name to problem."""

    status_code = 422

    def __init__(self, message: str, fields: Dict[str, str]):
        super().__init__(message)
        self.fields = fields
