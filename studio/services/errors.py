"""Exceptions raised by the generation workflow.

Every exception carries a message that is safe to show to the user.
"""

from typing import Optional


class StudioError(Exception):
    """Base class for all workflow errors."""


class NoActiveIdentityError(StudioError):
    """Raised when an operation is attempted without a signed-in user."""

    def __init__(self):
        super().__init__("You need to be signed in to do that.")


class InvalidRequestError(StudioError):
    """Raised when a generation request is malformed (e.g. empty prompt)."""


class GenerationInProgressError(StudioError):
    """Raised when a second batch is started while one is still running."""

    def __init__(self):
        super().__init__("A generation is already in progress. Please wait for it to finish.")


class ReservationFailedError(StudioError):
    """Raised when tokens could not be reserved. Nothing was spent."""

    def __init__(self, required: int, available: Optional[int] = None):
        self.required = required
        self.available = available
        if available is None:
            message = f"Could not reserve {required} tokens. Please try again."
        else:
            message = (
                f"Insufficient balance or reservation failed: "
                f"required {required}, available {available}."
            )
        super().__init__(message)


class SourceUnavailableError(StudioError):
    """Raised when a source item's image bytes could not be obtained."""

    def __init__(self, item_name: str, reason: Optional[str] = None):
        self.item_name = item_name
        self.reason = reason
        super().__init__(f"The image for '{item_name}' could not be loaded.")


class ContentRejectedError(StudioError):
    """Raised when the model's safety policy declined the request."""

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(
            "The request was rejected by the content safety policy. "
            "Please change the description and try again."
        )


class GenerationFailedError(StudioError):
    """Raised when the model returned no usable image or could not be reached."""

    NO_OUTPUT = "no_output"
    TRANSPORT = "transport"

    def __init__(self, kind: str, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        if kind == self.NO_OUTPUT:
            message = "The AI did not return a usable image."
        else:
            message = "The image service could not be reached. Please try again later."
        super().__init__(message)


class StorageError(StudioError):
    """Raised when a generated image could not be uploaded."""

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__("Failed to upload the generated image.")


class MetadataError(StudioError):
    """Raised when the metadata row for an uploaded image could not be saved."""

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__("Failed to save the generated image details.")


class GenerationAborted(StudioError):
    """Raised by the orchestrators after a failed run has been compensated.

    Attributes:
        cause: The error that stopped the run
        refunded: Tokens credited back (0 if the refund itself failed)
        completed: Units that were persisted before the failure
    """

    def __init__(self, cause: StudioError, refunded: int, completed: int = 0):
        self.cause = cause
        self.refunded = refunded
        self.completed = completed
        if refunded:
            message = f"{cause} Your {refunded} tokens have been refunded."
        else:
            message = f"{cause} The refund could not be completed; please contact support."
        super().__init__(message)
