"""
Abstract base class for AI extraction engines.
Every engine takes a whole document and returns the model's raw text;
parsing and reconciliation happen downstream and never trust that text.
"""

from abc import ABC, abstractmethod


class ExtractionEngine(ABC):
    """
    Abstract base class for all extraction engines.

    Every engine must:
    1. Accept document bytes plus the accounting context
    2. Return the model's free-form text response
    3. Report its name and version
    4. Raise EngineError on failure, classified by error_code
    """

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Unique identifier: 'claude', 'stub'"""
        ...

    @property
    @abstractmethod
    def engine_version(self) -> str:
        """Model id or semver string."""
        ...

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials are present to make calls."""
        ...

    @abstractmethod
    async def extract_document(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        document_type: str,
        company: str,
        month: str,
        year: int,
    ) -> str:
        """Send the document to the model and return its text response."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify engine is available and responding."""
        ...


# Error codes, used for logging and user-facing messages only
ERR_AI_NOT_CONFIGURED = "ERR_AI_NOT_CONFIGURED"
ERR_AI_AUTH = "ERR_AI_AUTH"
ERR_AI_RATE_LIMIT = "ERR_AI_RATE_LIMIT"
ERR_AI_BAD_REQUEST = "ERR_AI_BAD_REQUEST"
ERR_AI_NETWORK = "ERR_AI_NETWORK"
ERR_AI_API = "ERR_AI_API"
ERR_AI_RESPONSE = "ERR_AI_RESPONSE"


class EngineError(Exception):
    """Raised when an extraction engine fails."""

    def __init__(self, engine_name: str, error_code: str, message: str):
        self.engine_name = engine_name
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{engine_name}] {error_code}: {message}")
