# upside/errors.py
class UpsideError(Exception):
    def __init__(self, message: str, symbol: str | None = None):
        self.message = message
        self.symbol = symbol
        super().__init__(message)

class MissingQuote(UpsideError):
    def __init__(self, symbol: str):
        super().__init__(f"No current price available for {symbol}", symbol=symbol)

class PersistenceFailure(UpsideError):
    def __init__(self, symbol: str, cause: Exception):
        self.cause = cause
        super().__init__(f"Failed to persist {symbol}: {cause}", symbol=symbol)

class UpstreamError(UpsideError):
    def __init__(self, symbol: str, cause: Exception):
        self.cause = cause
        super().__init__(f"Upstream fetch failed for {symbol}: {cause}", symbol=symbol)

class RateLimited(UpstreamError):
    pass
