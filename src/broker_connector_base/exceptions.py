from typing import Optional


class BrokerError(Exception):
    """Base class for failures reported by a broker client"""
    pass

class BrokerConnectionError(BrokerError):
    """Raised when the broker cannot be reached"""
    pass

class BrokerAPIError(BrokerError):
    """Raised when the broker rejects a request or returns unusable data"""
    pass

class OrderExecutionError(BrokerError):
    """Raised when a single order cannot be submitted"""

    def __init__(self, message: str, figi: Optional[str] = None):
        super().__init__(message)
        self.figi = figi
