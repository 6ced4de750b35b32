"""Custom exceptions for Pagewatch."""


class PagewatchError(Exception):
    """Base exception for Pagewatch."""
    pass


class ConfigurationError(PagewatchError):
    """Configuration related errors."""
    pass


class DatabaseError(PagewatchError):
    """Database related errors."""
    pass


class MonitorNotFoundError(PagewatchError):
    """Requested monitor does not exist."""

    def __init__(self, monitor_id: int):
        super().__init__(f"Monitor {monitor_id} not found")
        self.monitor_id = monitor_id


class SelectorError(PagewatchError):
    """CSS selector could not be parsed."""
    pass


class SuggestionError(PagewatchError):
    """Selector suggestion request could not be served."""
    pass


class ExtractionError(PagewatchError):
    """Page could not be fetched or rendered."""
    pass


class FetchError(ExtractionError):
    """Static HTTP fetch failed."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class UnsafeURLError(ExtractionError):
    """URL points at a disallowed scheme, host or address."""
    pass


class RenderError(ExtractionError):
    """Headless render failed."""
    pass


class RenderTimeoutError(RenderError):
    """Headless render exceeded its deadline."""
    pass


class RenderUnavailableError(RenderError):
    """Render service could not be reached or is not configured."""
    pass


class RenderQuotaExceededError(ExtractionError):
    """Render was required but the quota denied it."""

    def __init__(self, reason: str):
        super().__init__(f"Page needs a headless render but none is available ({reason})")
        self.reason = reason
