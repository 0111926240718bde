"""
Roster fetch layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for roster fetch layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class StrategyTimeout(ServiceError):
    """A strategy missed its own deadline and was cancelled."""

    def __init__(self, strategy: str, timeout: float):
        self.strategy = strategy
        self.timeout = timeout
        super().__init__(
            f"Strategy '{strategy}' timed out after {timeout}s",
            service_id=strategy,
        )


class StrategyError(ServiceError):
    """The call underneath a strategy failed."""

    def __init__(self, strategy: str, reason: str):
        self.strategy = strategy
        super().__init__(f"Strategy '{strategy}' failed: {reason}", service_id=strategy)


class NoStrategySucceeded(ServiceError):
    """No live strategy produced members and no cached snapshot exists."""

    def __init__(self, partition: str, filter_name: str | None = None):
        self.partition = partition
        self.filter_name = filter_name
        target = f"{partition}:{filter_name}" if filter_name else partition
        super().__init__(f"No roster available for '{target}'", service_id=partition)


class CacheUnavailable(ServiceError):
    """Cache store read or write failed."""

    pass


class DirectoryError(ServiceError):
    """Roster directory request failed."""

    pass
