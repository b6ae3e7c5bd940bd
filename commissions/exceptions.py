# commissions/exceptions.py
from rest_framework import status


class CommissionError(Exception):
    """Base for errors surfaced to API callers as {"error", "code"}."""

    code = "commission_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message=None, **context):
        self.message = message or self.__class__.__doc__ or self.code
        self.context = context
        super().__init__(self.message)

    def as_response_data(self):
        data = {"error": self.message, "code": self.code}
        if self.context:
            data["details"] = {k: str(v) for k, v in self.context.items()}
        return data


class IllegalTransition(CommissionError):
    """Commission is not in a state that allows this action."""

    code = "illegal_transition"
    status_code = status.HTTP_409_CONFLICT


class IneligiblePayee(CommissionError):
    """Artist's Stripe account can't receive payouts."""

    code = "ineligible_payee"


class RevisionLimitExceeded(CommissionError):
    """No revisions left for this commission."""

    code = "revision_limit_exceeded"
    status_code = status.HTTP_409_CONFLICT


class AlreadyQueued(CommissionError):
    """Payout for this commission is already queued."""

    code = "already_queued"
    status_code = status.HTTP_409_CONFLICT


class NotAuthorized(CommissionError):
    """Not authorized."""

    code = "not_authorized"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidCommission(CommissionError):
    """Invalid commission request."""

    code = "invalid_commission"


class InvalidLedgerEntry(CommissionError):
    """Money owed entry failed validation."""

    code = "invalid_ledger_entry"


class ExternalProcessorError(CommissionError):
    """Payment processor call failed."""

    code = "processor_error"
    status_code = status.HTTP_502_BAD_GATEWAY


# Background-only signals. Callers absorb these; they never reach a client.

class DuplicateSettlementEvent(Exception):
    pass


class InsufficientLiquidity(Exception):
    pass


class UnresolvableEvent(Exception):
    pass
