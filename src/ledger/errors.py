"""Typed failures raised by the record store and the search core."""


class LedgerError(Exception):
    """Base class for ledger failures.

    Attributes:
        message: Underlying failure reason.
    """

    description_prefix = "An unknown error occurred"
    recovery_suggestion = "Please try again or contact support if the problem persists"

    def __init__(self, message: str = "") -> None:
        """Initialize ledger error.

        Args:
            message: Underlying failure reason.
        """
        super().__init__(message)
        self.message = message

    @property
    def description(self) -> str:
        """Human-readable summary including the failure reason."""
        if self.message:
            return f"{self.description_prefix}: {self.message}"
        return self.description_prefix


class SearchFailed(LedgerError):
    """Raised when the fallback content filter itself fails."""

    description_prefix = "Search failed"
    recovery_suggestion = "Please try your search again with different terms"


class SearchIndexError(LedgerError):
    """Raised by the search index; callers degrade to the fallback filter."""

    description_prefix = "Search index error"
    recovery_suggestion = "Please try again later"


class IndexUnavailable(SearchIndexError):
    """Raised when the search index cannot be reached or queried."""

    description_prefix = "Search index is currently unavailable"


class InvalidQuery(SearchIndexError):
    """Raised when query text cannot be turned into an index query."""

    description_prefix = "Invalid search query"
    recovery_suggestion = "Please check your search terms and try again"


class SaveFailed(LedgerError):
    description_prefix = "Failed to save transaction"
    recovery_suggestion = "Please check your input and try again"


class UpdateFailed(LedgerError):
    description_prefix = "Failed to update transaction"
    recovery_suggestion = (
        "Please check your input and try again. "
        "The transaction may have been modified by another process"
    )


class DeleteFailed(LedgerError):
    description_prefix = "Failed to delete transaction"
    recovery_suggestion = (
        "The transaction may have already been deleted or modified. "
        "Please refresh and try again"
    )


class LoadFailed(LedgerError):
    description_prefix = "Failed to load transactions"
    recovery_suggestion = "Please try refreshing the transactions list"


class InvalidData(LedgerError):
    description_prefix = "Invalid data"
    recovery_suggestion = "Please check your input and try again"


class NotFound(LedgerError):
    """Raised when a transaction id does not exist in the store."""

    description_prefix = "Transaction not found"
    recovery_suggestion = "Please refresh the transactions list"

    def __init__(self, transaction_id: str) -> None:
        """Initialize not-found error.

        Args:
            transaction_id: The id that could not be resolved.
        """
        super().__init__(transaction_id)
        self.transaction_id = transaction_id
