"""Exception hierarchy shared by the lookup, knowledge base and chat services."""


class BemufixError(Exception):
    """Base exception for all backend errors."""


class ConfigurationError(BemufixError):
    """Required configuration (e.g. an API credential) is missing."""


class DependencyUnavailableError(BemufixError):
    """A backing dependency (cache, browser, fallback API) could not be reached."""

    def __init__(self, dependency: str, message: str = "") -> None:
        self.dependency = dependency
        super().__init__(message or f"{dependency} unavailable")


class VehicleNotFoundError(BemufixError):
    """No source returned usable data for a registration number."""

    def __init__(self, registration_number: str) -> None:
        self.registration_number = registration_number
        super().__init__(
            f"No vehicle data found for registration number: {registration_number}"
        )
