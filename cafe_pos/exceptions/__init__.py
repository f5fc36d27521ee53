"""Custom exceptions for the POS order and checkout engine."""


class PosError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class UserInputError(PosError):
    """Operator mistake: surfaced immediately, nothing was mutated."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class EmptyCartError(UserInputError):
    def __init__(self, message="The cart is empty"):
        super().__init__(message)


class NoTableSelectedError(UserInputError):
    def __init__(self, message="Select a table first"):
        super().__init__(message)


class NoEmployeeError(UserInputError):
    def __init__(self, message="No operator is bound to this terminal"):
        super().__init__(message)


class InvalidAmountError(UserInputError):
    """Raised for negative or unparseable monetary input."""


class DiscountExceedsTotalError(UserInputError):
    """Raised when manual + tier discount is larger than subtotal + VAT."""
    def __init__(self, discount, total):
        super().__init__(
            f"Discount {discount} exceeds the order total {total}",
            payload={'discount': str(discount), 'total': str(total)}
        )


class InsufficientPaymentError(UserInputError):
    """Raised when the tendered amount does not cover the final total."""
    def __init__(self, tendered, required):
        super().__init__(
            f"Amount tendered {tendered} is less than the total due {required}",
            payload={'tendered': str(tendered), 'required': str(required)}
        )


class TransferRejectedError(UserInputError):
    """Raised when an order cannot be moved to the requested table."""
    def __init__(self, message):
        super().__init__(message, status_code=409)


class NotFoundError(PosError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class RemoteWriteError(PosError):
    """A create/update/delete on the remote data API did not succeed."""
    def __init__(self, message, payload=None):
        super().__init__(message, 502, payload)


class SettlementFailedError(RemoteWriteError):
    """
    A settlement stopped at a persisting step.

    `step` is 'invoice' (nothing was written) or 'lines' (the header is
    committed and `written_lines` lines made it before the failure).
    """
    def __init__(self, step, message, idempotency_key, invoice_id=None,
                 written_lines=0, failed_lines=None):
        self.step = step
        self.idempotency_key = idempotency_key
        self.invoice_id = invoice_id
        self.written_lines = written_lines
        self.failed_lines = list(failed_lines or [])
        super().__init__(message, payload={
            'step': step,
            'idempotency_key': idempotency_key,
            'invoice_id': invoice_id,
            'written_lines': written_lines,
            'failed_lines': self.failed_lines,
        })


class SettlementInProgressError(PosError):
    """Raised when a settlement is requested while another one is committing."""
    def __init__(self, message="A settlement is already being committed"):
        super().__init__(message, 409)


class IdempotencyConflictError(UserInputError):
    """Raised when an idempotency key is reused for a different or already settled order."""
    def __init__(self, message, idempotency_key, invoice_id=None):
        super().__init__(message, status_code=409, payload={
            'idempotency_key': idempotency_key,
            'invoice_id': invoice_id,
        })
