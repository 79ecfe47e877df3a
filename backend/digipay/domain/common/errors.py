"""Domain error types."""


class DomainError(Exception):
    """Base domain error."""
    pass


class NotFoundError(DomainError):
    """Resource not found."""
    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} with id {identifier} not found")


class ValidationError(DomainError):
    """Validation error."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthorizationError(DomainError):
    """Authorization error."""
    def __init__(self, message: str = "Not authorized"):
        self.message = message
        super().__init__(message)


class ConflictError(DomainError):
    """Resource conflict error."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ExternalServiceError(DomainError):
    """A collaborator (payment gateway, KYC provider) failed or was unreachable."""
    def __init__(self, service: str, message: str):
        self.service = service
        self.message = message
        super().__init__(f"{service}: {message}")


# Validation subclasses (400)

class InvalidAmountError(ValidationError):
    """Amount is not positive or has more precision than the currency allows."""
    pass


class AmountOutOfRangeError(ValidationError):
    """Trade amount outside the offer's min/max or above its remaining amount."""
    pass


class SelfTradeError(ValidationError):
    """Taker is the offer owner."""
    def __init__(self, message: str = "Cannot trade against your own offer"):
        super().__init__(message)


class InsufficientFundsError(ValidationError):
    """Balance would go negative."""
    def __init__(self, currency: str, required=None, available=None):
        self.currency = currency
        self.required = required
        self.available = available
        if required is not None and available is not None:
            message = f"Insufficient {currency} balance. Required: {required}, Available: {available}"
        else:
            message = f"Insufficient {currency} balance"
        super().__init__(message)


# Conflict subclasses (409)

class InvalidStateError(ConflictError):
    """Operation not allowed from the entity's current status."""
    pass


class OfferNotActiveError(ConflictError):
    """Offer is paused, completed or deleted."""
    def __init__(self, offer_id: str):
        self.offer_id = offer_id
        super().__init__(f"Offer {offer_id} is not active")


class AlreadyDisputedError(ConflictError):
    """Trade already has an open dispute."""
    def __init__(self, trade_id: str):
        self.trade_id = trade_id
        super().__init__(f"Trade {trade_id} is already disputed")


class DuplicateRatingError(ConflictError):
    """Rater already rated this trade."""
    def __init__(self, trade_id: str, rater_id: str):
        self.trade_id = trade_id
        self.rater_id = rater_id
        super().__init__(f"User {rater_id} has already rated trade {trade_id}")


class DeadlineExpiredError(ConflictError):
    """Payment deadline passed."""
    def __init__(self, trade_id: str):
        self.trade_id = trade_id
        super().__init__(f"Payment deadline for trade {trade_id} has passed")
