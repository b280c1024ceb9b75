"""
This file contains custom, application-specific exceptions.
"""

class DownstreamServiceError(Exception):
    """Raised when an external provider (payments, e-mail) fails."""
    pass

class PaymentProviderError(DownstreamServiceError):
    """Raised when the payment processor rejects or fails a request."""
    pass

class EmailDeliveryError(DownstreamServiceError):
    """Raised when the transactional e-mail provider fails to send a message."""
    pass
