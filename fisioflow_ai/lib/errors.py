"""Error taxonomy for the AI query engine."""


class EngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(EngineError):
    """Malformed query or knowledge entry. Surfaced to the caller, never retried."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ProviderUnavailable(EngineError):
    """Provider is disabled, unconfigured, blocked or over quota."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"Provider {provider} unavailable: {reason}")
        self.provider = provider
        self.reason = reason


class ProviderCallFailed(EngineError):
    """Network, HTTP or timeout failure while calling an external provider."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"Provider {provider} call failed: {message}")
        self.provider = provider


class StorageFull(EngineError):
    """Durable cache tier is at capacity."""

    def __init__(self, tier: str, needed: int, capacity: int):
        super().__init__(f"{tier} full: needs {needed} bytes, capacity {capacity}")
        self.tier = tier
        self.needed = needed
        self.capacity = capacity


class IndexCorruption(EngineError):
    """A persisted knowledge document could not be loaded into the index."""

    def __init__(self, entry_id: str, message: str):
        super().__init__(f"Knowledge entry {entry_id} is corrupt: {message}")
        self.entry_id = entry_id


class ConfigurationInvalid(EngineError):
    """Startup configuration failed one or more checks."""

    def __init__(self, errors: list[str]):
        super().__init__("Invalid configuration: " + "; ".join(errors))
        self.errors = errors
