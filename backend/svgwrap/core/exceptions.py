from enum import Enum
from typing import Dict, List, Optional, TypedDict, Union


class InputDetails(TypedDict, total=False):
    """Details for rejected inputs."""

    input_index: int
    input_name: str
    mime_type: str
    size: int
    max_size: int
    supported_types: List[str]


class EncodeDetails(TypedDict, total=False):
    """Details for encoder failures."""

    mime_type: str
    size: int
    timeout_seconds: float


class StorageDetails(TypedDict, total=False):
    """Details for history storage errors."""

    db_path: str
    operation: str
    record_id: str
    schema_version: int


class DeliveryDetails(TypedDict, total=False):
    """Details for delivery errors."""

    file_name: str
    task_id: str
    status: str
    failed_items: List[str]


ErrorDetails = Union[
    InputDetails,
    EncodeDetails,
    StorageDetails,
    DeliveryDetails,
    Dict[str, Union[str, int, float, bool, List[str]]],
]


class SvgWrapError(Exception):
    """Base exception for all svgwrap errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        details: Optional[ErrorDetails] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class InvalidInputError(SvgWrapError):
    """Raised when an input image is rejected before task creation."""

    def __init__(self, message: str, details: Optional[InputDetails] = None):
        super().__init__(message=message, error_code="SVG001", details=details)


class EncodeErrorKind(str, Enum):
    """Failure categories reported by an encoder."""

    UNSUPPORTED_FORMAT = "unsupported_format"
    READ_FAILURE = "read_failure"
    DECODE_FAILURE = "decode_failure"


class EncodeError(SvgWrapError):
    """Raised by an encoder when an image cannot be wrapped."""

    def __init__(
        self,
        message: str,
        kind: EncodeErrorKind,
        details: Optional[EncodeDetails] = None,
    ):
        super().__init__(message=message, error_code="SVG101", details=details)
        self.kind = kind


class BatchContractError(SvgWrapError):
    """Raised when the orchestrator is used outside its contract."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="SVG201")


class StorageError(SvgWrapError):
    """Base class for history storage errors."""

    pass


class StorageUnavailableError(StorageError):
    """Raised when the history database cannot be opened."""

    def __init__(self, message: str, details: Optional[StorageDetails] = None):
        super().__init__(message=message, error_code="SVG301", details=details)


class StorageIOError(StorageError):
    """Raised when a history operation cannot complete."""

    def __init__(self, message: str, details: Optional[StorageDetails] = None):
        super().__init__(message=message, error_code="SVG302", details=details)


class DeliveryError(SvgWrapError):
    """Raised when an artifact cannot be handed to the user."""

    def __init__(self, message: str, details: Optional[DeliveryDetails] = None):
        super().__init__(message=message, error_code="SVG401", details=details)
