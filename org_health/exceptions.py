"""
Organization Health - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

All exceptions for the health scoring engine:
- OrgHealthError: Base exception
- CategoryCollectionError: One category could not be collected
- TotalCollectionFailure: Every category absent for an organization
- PersistenceError: Snapshot computed but not written
- InvalidConfigurationError: Weights / curves / thresholds invalid
- UnknownCategoryError: Category not present in configuration
- RunNotFoundError: Unknown recalculation run id

============================================================
FAILURE SEMANTICS
============================================================

- Category failures are recovered locally (weights renormalized)
- Organization failures are recorded, never fatal to a run
- Configuration errors are fatal at load time, never corrected

============================================================
"""

from typing import Any, Dict, List, Optional


class OrgHealthError(Exception):
    """
    Base exception for health scoring errors.

    All health scoring exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        organization_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            organization_id: Affected organization, if any
            details: Additional error details
        """
        self.message = message
        self.organization_id = organization_id
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message."""
        if self.organization_id:
            return f"[{self.organization_id}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "organization_id": self.organization_id,
            "details": self.details,
        }


class CategoryCollectionError(OrgHealthError):
    """
    Raised when a single category cannot be collected.

    Recovered locally: the category is marked absent.
    """

    def __init__(
        self,
        organization_id: str,
        category: str,
        reason: str,
    ) -> None:
        self.category = category
        self.reason = reason
        super().__init__(
            message=f"Collection failed for category '{category}': {reason}",
            organization_id=organization_id,
            details={"category": category, "reason": reason},
        )


class TotalCollectionFailure(OrgHealthError):
    """
    Raised when no category produced a value for an organization.

    No snapshot is written; the previous snapshot remains the latest.
    """

    def __init__(
        self,
        organization_id: Optional[str] = None,
        failed_categories: Optional[List[str]] = None,
    ) -> None:
        self.failed_categories = list(failed_categories or [])
        message = "All categories absent"
        if self.failed_categories:
            message += f": {', '.join(self.failed_categories)}"
        super().__init__(
            message=message,
            organization_id=organization_id,
            details={"failed_categories": self.failed_categories},
        )


class PersistenceError(OrgHealthError):
    """Raised when a snapshot could not be written after retries."""

    def __init__(
        self,
        organization_id: str,
        attempts: int,
        original_exception: Optional[Exception] = None,
    ) -> None:
        self.attempts = attempts
        self.original_exception = original_exception
        if original_exception is None:
            reason = "unknown error"
        else:
            reason = str(original_exception) or type(original_exception).__name__
        super().__init__(
            message=f"Snapshot write failed after {attempts} attempt(s): {reason}",
            organization_id=organization_id,
            details={
                "attempts": attempts,
                "original_error": type(original_exception).__name__ if original_exception else None,
            },
        )


class InvalidConfigurationError(OrgHealthError):
    """
    Raised when scoring configuration is invalid.

    Fatal at startup. Configuration is never silently corrected.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        self.field = field
        super().__init__(message=message, details=details)


class UnknownCategoryError(InvalidConfigurationError):
    """Raised when a category is not part of the configured category set."""

    def __init__(self, category: str, known: Optional[List[str]] = None) -> None:
        self.category = category
        message = f"Unknown category: {category}"
        if known:
            message += f". Configured: {', '.join(known)}"
        super().__init__(message=message, field="category", value=category)


class RunNotFoundError(OrgHealthError):
    """Raised when a recalculation run id is unknown."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(message=f"Run not found: {run_id}", details={"run_id": run_id})
