"""
Exceptions raised by zevm.

Machine halts (out of gas, invalid jump destination, ...) are *not* reported
through these classes at the public API: they are `Halt` outcomes, i.e. data.
The classes below are for usage errors, inconclusive solver answers, and
failures of collaborators such as storage backends.
"""


class ZEvmException(Exception):
    """
    Base class for errors that abort the current `step` or `apply` call.

    The committed state of every execution is left unchanged when one of these is raised.
    """

    pass


class UsageError(ZEvmException):
    """
    Base class for misuse of the step/apply protocol by the caller.
    """

    pass


class AppliedOutcomeNotOffered(UsageError):
    """
    Raised when committing an outcome that was not in the last enumeration for that execution.
    """

    def __init__(self, execution_id: int, outcome, offered=None):
        self.execution_id = execution_id
        self.outcome = outcome
        self.offered = list(offered or [])
        super().__init__(
            f"outcome {outcome} was not offered for execution {execution_id}"
            f" (offered: {self.offered})"
        )


class AlreadyHalted(UsageError):
    """
    Raised when stepping or applying on a terminal execution.
    """

    def __init__(self, execution_id: int, reason=None):
        self.execution_id = execution_id
        self.reason = reason
        super().__init__(f"execution {execution_id} already halted ({reason})")


class SolverUnknown(ZEvmException):
    """
    Raised when the solver answers `unknown` (e.g. timeout) to a feasibility query.

    Unknown is never folded into sat or unsat; the enumeration is aborted instead.
    """

    def __init__(self, reason: str, query=None):
        self.reason = reason
        self.query = query
        super().__init__(f"solver returned unknown: {reason}")


class StorageError(Exception):
    """
    Default error kind of storage backends. Propagated opaquely through `apply`.
    """

    pass


class ExceptionalHalt(Exception):
    """
    Internal signal that the machine cannot continue, e.g. popping an empty stack.

    Ops check stack depth before touching the stack, so these only escape on an internal bug.
    """

    pass


class StackUnderflowError(ExceptionalHalt):
    """
    Occurs when a pop or peek is executed past the bottom of the stack.
    """

    pass


class StackOverflowError(ExceptionalHalt):
    """
    Occurs when a push is executed on a stack at max capacity.
    """

    pass
