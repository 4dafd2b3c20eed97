"""
Error taxonomy

Services raise these; main.py turns them into JSON responses using the
status code carried by each class.
"""


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    status_code = 400


class NotFound(StoreError):
    status_code = 404


class CheckoutNotFound(NotFound):
    """A product named in an order does not exist; a bad request at checkout."""
    status_code = 400


class InsufficientStock(StoreError):
    status_code = 400

    def __init__(self, title: str, available: int):
        super().__init__(f'Not enough stock for "{title}". Available: {available}')
        self.title = title
        self.available = available


class TotalMismatch(StoreError):
    status_code = 400

    def __init__(self, declared: float, computed: float):
        super().__init__("Total amount does not match items")
        self.declared = declared
        self.computed = computed


class Conflict(StoreError):
    status_code = 409


class Unauthorized(StoreError):
    status_code = 401


class Forbidden(StoreError):
    status_code = 403


class ServiceUnavailable(StoreError):
    status_code = 503
