class BillingError(Exception):
    """Base class for errors raised by the calling/billing services."""


class InsufficientBalance(BillingError):
    def __init__(self, balance, required):
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient balance: {balance} available, {required} required."
        )


class RateUnavailable(BillingError):
    def __init__(self, destination_number):
        self.destination_number = destination_number
        super().__init__(f"No call rate available for {destination_number}.")


class ProviderError(BillingError):
    """The telephony provider refused or failed to place a call."""

    def __init__(self, message, detail=None):
        self.detail = detail or {}
        super().__init__(message)
