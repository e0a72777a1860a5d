"""Error taxonomy surfaced to operators as failure cards."""

from __future__ import annotations


class InsuranceError(Exception):
    """Base class for errors rendered at the command boundary.

    ``title`` heads the failure card; ``fields`` are extra (name, value)
    pairs shown beneath the message.
    """

    title = "❌ ERROR"
    footer: str | None = None

    def __init__(self, message: str, fields: list[tuple[str, str]] | None = None) -> None:
        super().__init__(message)
        self.fields = list(fields or [])


class ValidationError(InsuranceError):
    title = "❌ INVALID INPUT"


class DuplicatePlate(InsuranceError):
    title = "❌ DUPLICATE ENTRY"
    footer = "Check /insurance-list for the existing entry"

    def __init__(self, plate_id: str) -> None:
        super().__init__(f"Number plate *{plate_id}* already exists")
        self.plate_id = plate_id


class NotFound(InsuranceError):
    title = "❌ RECORD NOT FOUND"
    footer = "Check plate number or register new vehicle"

    def __init__(self, plate_id: str) -> None:
        super().__init__(f"No insurance found for:\n*{plate_id}*")
        self.plate_id = plate_id


class InvalidAdjustment(InsuranceError):
    title = "❌ INVALID ADJUSTMENT"

    def __init__(self, days: int, old_expiry: str, new_expiry: str, days_left: int) -> None:
        super().__init__(
            f"Cannot subtract {days} days",
            fields=[
                ("Current Expiry", old_expiry),
                ("Resulting Expiry", new_expiry),
                ("Days Left", str(days_left)),
            ],
        )
        self.days_left = days_left


class DeliveryFailure(InsuranceError):
    title = "❌ DELIVERY FAILED"

    def __init__(self, target: str, sent: int, reason: str) -> None:
        super().__init__(f"Could not deliver to {target} after {sent} page(s): {reason}")
        self.target = target
        self.sent = sent


class AuthDenied(InsuranceError):
    title = "\U0001f512 ACCESS DENIED"

    def __init__(self, message: str = "You lack required permissions") -> None:
        super().__init__(message)


class CollectorTimeout(InsuranceError):
    title = "⏲️ TIMED OUT"

    def __init__(self, seconds: float) -> None:
        super().__init__(f"No response within {seconds:g} seconds")
        self.seconds = seconds
