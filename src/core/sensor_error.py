"""
SensorError - checked error value returned by every fallible SDK operation

A non-success SensorError carries an obligation: it must be inspected (by
reading its code or message, testing its truth value, or calling `ignore()`)
before it is garbage collected. Dropping an unchecked error is a programming
defect and is reported by `runtime_assert`:

- LIDAR_ABORT_ON_UNCHECKED_ERROR=1: the process aborts
- otherwise: a diagnostic is logged to the error log and execution continues

The policy is read once at import time.

Usage:
    error = replay.open(path)
    if error:
        logger.error(f"Failed to open capture: {error}")
        return

    replay.seek(5.0).raise_for_error()
    session.set_port(9000).ignore()
"""

import logging
import os

from config import config
from models.enums import ErrorCode, get_error_code_name, is_error_code, is_fault_code

logger = logging.getLogger(__name__)

ABORT_ON_UNCHECKED = bool(config.ERRORS["abort_on_unchecked"])


def _safe_log(message: str) -> None:
    """Log at ERROR level, tolerating a logging system that is shutting down"""
    try:
        logger.error(message)
    except (ValueError, OSError, AttributeError, TypeError):
        # Logging streams may already be closed during interpreter shutdown
        pass


def runtime_assert(condition: bool, msg: str = "", condition_text: str = "") -> None:
    """
    Runtime assert check for catching bugs.

    Logs an AssertionError diagnostic when `condition` is false, then aborts
    the process if ABORT_ON_UNCHECKED is set.
    """
    if condition:
        return

    diagnostic = f'AssertionError (condition "{condition_text}")'
    if msg:
        diagnostic += f":\n\t{msg}"
    _safe_log(diagnostic)

    if ABORT_ON_UNCHECKED:
        os.abort()


class SensorError(Exception):
    """
    Error returned by most SDK functions.

    Getter functions do not return a SensorError, because they cannot fail.
    """

    def __init__(self, code: int = ErrorCode.SUCCESS, msg: str = ""):
        name = get_error_code_name(code)
        runtime_assert(name != "", f"Invalid error code: {code!r}", "get_error_code_name(code) != ''")

        self._code = ErrorCode(code) if name else int(code)
        self._msg = "" if self._code == ErrorCode.SUCCESS else str(msg or "")
        # Success carries nothing to report, so it is born checked
        self._used = self._code == ErrorCode.SUCCESS
        super().__init__(self._create_message())

    def __del__(self):
        if getattr(self, "_used", True):
            return
        self._used = True
        try:
            runtime_assert(False, f"Error not checked! {self._create_message()}", "error.checked")
        except (NameError, AttributeError, TypeError):
            # Module globals torn down during interpreter shutdown
            pass

    # ------------------------------------------------------------------------
    # Obligation transfer
    # ------------------------------------------------------------------------

    def transfer(self) -> "SensorError":
        """
        Move the inspection obligation into a new value.

        The source is marked as checked; the returned copy is unchecked.
        """
        self._used = True
        return type(self)(self._code, self._msg)

    def __copy__(self) -> "SensorError":
        return self.transfer()

    def __deepcopy__(self, memo) -> "SensorError":
        return self.transfer()

    def __reduce__(self):
        self._used = True
        return (type(self), (int(self._code), self._msg))

    # ------------------------------------------------------------------------
    # Inspection (each of these discharges the obligation)
    # ------------------------------------------------------------------------

    def ignore(self) -> None:
        """Mark error as checked without reading it."""
        self._used = True

    acknowledge = ignore

    def code(self) -> ErrorCode:
        """Returns error code"""
        self._used = True
        return self._code

    def message(self) -> str:
        """Returns error message (without the code name)"""
        self._used = True
        return self._msg

    msg = message

    def name(self) -> str:
        return get_error_code_name(self.code())

    def raise_for_error(self) -> None:
        """Raise this error if it is not SUCCESS."""
        if self:
            raise self

    def __bool__(self) -> bool:
        """False if code is SUCCESS, True otherwise."""
        return self.code() != ErrorCode.SUCCESS

    def __int__(self) -> int:
        return int(self.code())

    def __str__(self) -> str:
        self._used = True
        return self._create_message()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({get_error_code_name(self._code) or self._code}, {self._msg!r})"

    # ------------------------------------------------------------------------
    # Classification (pure queries, do not discharge the obligation)
    # ------------------------------------------------------------------------

    def is_error(self) -> bool:
        return is_error_code(self._code)

    def is_fault(self) -> bool:
        return is_fault_code(self._code)

    @property
    def checked(self) -> bool:
        """True once the error has been inspected (always True for SUCCESS)."""
        return self._used

    def _create_message(self) -> str:
        if self._code == ErrorCode.SUCCESS:
            return ""
        code_name = get_error_code_name(self._code) or str(self._code)
        if not self._msg:
            return code_name
        return f"{code_name}: {self._msg}"


class SensorErrorWrapper:
    """
    Adds the current context to error stack traces.

    Usage:
        wrapper = SensorErrorWrapper("opening capture")
        if wrapper.assign(replay.open(path)):
            return wrapper.error  # "opening capture\\n\\t<inner message>"
    """

    def __init__(self, context: str):
        self.context = context
        self.error = SensorError()

    def assign(self, error: SensorError) -> "SensorErrorWrapper":
        # Overwriting discards the previous value, as assignment does
        self.error.ignore()
        if not error:
            self.error = SensorError()
            return self
        msg = f"{self.context}\n\t{error.message()}"
        self.error = SensorError(error.code(), msg)
        return self

    def __bool__(self) -> bool:
        return bool(self.error)
