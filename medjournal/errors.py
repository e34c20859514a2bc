from typing import Optional


class MedJournalError(Exception):
    """Base class for every error the journal workflow surfaces."""

    user_message = "Something went wrong. Please try again."
    transient = False


class ConfigurationError(MedJournalError):
    """Required settings or credentials are missing or malformed."""

    user_message = "The journal service is not configured. Contact the operator."


# =========================================================
# Classifier Gateway
# =========================================================
class ClassifierError(MedJournalError):
    pass


class InvalidInput(ClassifierError):
    user_message = "Please write your health journal entry first."


class UpstreamError(ClassifierError):
    """The model endpoint answered with a non-success status."""

    user_message = "Failed to analyze your entry. Please try again."
    transient = True

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class ClassifierTimeout(UpstreamError):
    user_message = "The analysis took too long. Please try again."


class EmptyResponse(ClassifierError):
    user_message = "The AI returned no analysis. Please try again."
    transient = True


class UnparsableResponse(ClassifierError):
    user_message = "Failed to analyze your entry. Please try again."

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


# =========================================================
# Signer
# =========================================================
class SignerError(MedJournalError):
    pass


class NotConnected(SignerError):
    user_message = "Connect your wallet to record this entry."


class UserRejected(SignerError):
    user_message = "Signing was cancelled."


class AgentUnavailable(SignerError):
    user_message = "The wallet could not be reached. Please try again."
    transient = True


class TransactionReverted(SignerError):
    user_message = "The recording transaction failed on chain. Please try again."
    transient = True


class WrongNetwork(SignerError):
    """Advisory only: the wallet is attached to an unexpected chain."""

    user_message = "Your wallet is on the wrong network."

    def __init__(self, expected_chain_id: int, actual_chain_id: int):
        super().__init__(
            f"Expected chain {expected_chain_id}, wallet is on {actual_chain_id}"
        )
        self.expected_chain_id = expected_chain_id
        self.actual_chain_id = actual_chain_id


# =========================================================
# Entry Store
# =========================================================
class StoreError(MedJournalError):
    pass


class StoreUnavailable(StoreError):
    user_message = "Failed to save your entry. Please try again."
    transient = True


class InvalidRecord(StoreError):
    user_message = "Failed to save your entry."


# =========================================================
# Workflow
# =========================================================
class WorkflowError(MedJournalError):
    pass


class WorkflowBusy(WorkflowError):
    user_message = "Please wait for the current request to finish."


class InvalidTransition(WorkflowError):
    pass


class CallTimeout(WorkflowError):
    """A timed external call did not finish within its deadline."""

    user_message = "The request took too long. Please try again."
    transient = True

    def __init__(self, step: str, timeout_seconds: float):
        super().__init__(f"{step} did not complete within {timeout_seconds}s")
        self.step = step
        self.timeout_seconds = timeout_seconds
