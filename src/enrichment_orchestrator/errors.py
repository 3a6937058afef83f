from __future__ import annotations


class OrchestratorError(Exception):
    """Base error for enrichment orchestration failures."""


class ConfigurationError(OrchestratorError):
    pass


class IntegrationNotFoundError(ConfigurationError):
    pass


class IntegrationInactiveError(ConfigurationError):
    pass


class ToolNotAllowedError(ConfigurationError):
    pass


class AuthenticationError(OrchestratorError):
    pass


class UpstreamProtocolError(OrchestratorError):
    """Unexpected upstream response shape / contract mismatch."""


class RequestTimeoutError(OrchestratorError):
    """Upstream did not answer within its configured timeout."""


class StoreError(OrchestratorError):
    """Persistent store read/write failed."""
