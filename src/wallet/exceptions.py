class WalletError(Exception):
    """Base for every failure the wallet core reports to its caller."""


class ValidationError(WalletError):
    """Bad user input (address, amount, asset). Raised before any network call."""


class WalletLockedError(WalletError):
    pass


class SubmissionError(WalletError):
    """Signing or RPC rejection at submit time. No pending entry was created."""


class CancellationInFlightError(SubmissionError):
    pass


class DuplicateNonceError(WalletError):
    """A pending entry already occupies this (sender, nonce) slot."""


class ConfirmationFailure(WalletError):
    """Receipt reverted, or the transaction was dropped or replaced."""


class EstimationError(WalletError):
    pass


class SyncError(WalletError):
    """Balance or history fetch failed. Previous known state is kept."""
