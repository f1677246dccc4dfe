"""Delivery outcome classification — maps a raw transport result to an outcome."""

from loki_shipper.models import (
    DeliveryOutcome,
    DeliveryResult,
    Rejected,
    Success,
    TransportFailure,
)


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 300


def describe_error(exc: BaseException) -> str:
    """Human-readable fault description: ``<ExceptionType>: <message>``."""
    message = str(exc).strip()
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


def classify(result: DeliveryResult) -> DeliveryOutcome:
    """Classify one delivery attempt.

    A fault raised by the call is a TransportFailure. Otherwise the initial
    status code alone decides: 2xx is Success, anything else is Rejected.
    """
    if result.is_fault:
        return TransportFailure(error_description=describe_error(result.error))

    status_code = result.response.status_code
    if is_success_status(status_code):
        return Success(status_code=status_code)
    return Rejected(status_code=status_code, response_body=result.body or "")
