"""Domain errors raised by the aggregation engine and the ledger services."""


class PocketLedgerError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(PocketLedgerError):
    """Bad input shape or range; the caller can fix it."""

    status_code = 400


class ConflictError(PocketLedgerError):
    """Overlapping active budget window or duplicate unique key."""

    status_code = 409


class NotFoundError(PocketLedgerError):
    """Missing record, or a record owned by someone else."""

    status_code = 404


class ConsistencyError(PocketLedgerError):
    """
    An aggregate could not be kept in step with the ledger.

    Never surfaced to callers: whoever catches it logs and reconciles.
    """
