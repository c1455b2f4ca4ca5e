# SPDX-License-Identifier: AGPL-3.0

"""
Logging for zevm, rendered through rich.

Two loggers are used: `zevm`, and its child `zevm.unique` which drops messages
it has already emitted (used for warnings that would otherwise repeat on every
path). The child has no level of its own, so `set_verbosity()` controls both.
"""

import logging
from dataclasses import dataclass

from rich.logging import RichHandler

logging.basicConfig(
    format="%(message)s",
    handlers=[RichHandler(level=logging.NOTSET, show_time=False, show_path=False)],
)

logger = logging.getLogger("zevm")


class UniqueLoggingFilter(logging.Filter):
    def __init__(self):
        super().__init__()
        self.seen: set[str] = set()

    def filter(self, record):
        if record.msg in self.seen:
            return False
        self.seen.add(record.msg)
        return True


logger_unique = logging.getLogger("zevm.unique")
logger_unique.addFilter(UniqueLoggingFilter())


def log(level: int, text: str, allow_duplicate=True) -> None:
    (logger if allow_duplicate else logger_unique).log(level, text)


def debug(text: str, allow_duplicate=True) -> None:
    log(logging.DEBUG, text, allow_duplicate)


def info(text: str, allow_duplicate=True) -> None:
    log(logging.INFO, text, allow_duplicate)


def warn(text: str, allow_duplicate=True) -> None:
    log(logging.WARNING, text, allow_duplicate)


def error(text: str, allow_duplicate=True) -> None:
    log(logging.ERROR, text, allow_duplicate)


def set_verbosity(verbose: int, debug_mode: bool = False) -> None:
    # warnings by default, -v adds info, -vv (or --debug) every committed outcome
    if debug_mode or verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logger.setLevel(level)


#
# Warnings with error code
#

WARNINGS_DOC = "docs/warnings.md"


@dataclass(frozen=True)
class ErrorCode:
    code: str

    def url(self) -> str:
        return f"{WARNINGS_DOC}#{self.code}"


INTERNAL_ERROR = ErrorCode("internal-error")
SOLVER_UNKNOWN = ErrorCode("solver-unknown")
DEPTH_BOUND = ErrorCode("depth-bound")
WIDTH_BOUND = ErrorCode("width-bound")


def warn_code(error_code: ErrorCode, msg: str, allow_duplicate=True) -> None:
    warn(f"{msg}\n(see {error_code.url()})", allow_duplicate)
