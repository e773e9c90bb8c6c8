"""Custom exceptions for the simulator application."""


class SimulatorException(Exception):
    """Base class for simulator exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Simulator error"):
        self.message = message
        super().__init__(message)


class SimulatedCrashError(SimulatorException):
    """Raised by ``mode=reset`` to emulate a crash / connection reset.

    The request fails before any simulated response exists; the app turns
    it into a bare HTTP 500 without the ``x-request-id`` header.
    """
    status_code = 500

    def __init__(
        self,
        request_id: str,
        mode: str = "reset",
        started: float | None = None,
        message: str = "Simulated crash / connection reset",
    ):
        self.request_id = request_id
        self.mode = mode
        self.started = started
        super().__init__(message)
