"""Output function protocol shared by the kernel callbacks."""

import enum


class OutputMode(enum.Enum):
    """How the user output function is involved in a run.

    NEVER
        The output function is never called.
    WITHOUT_DENSE
        Called after every accepted step, without dense output.
    DENSE
        Called after every accepted step, with dense output available.
    """

    NEVER = 0
    WITHOUT_DENSE = 1
    DENSE = 2


class OutputCall(enum.Enum):
    """Reason the output function is being called."""

    INIT = 0
    STEP = 1
    DONE = 2


class OutputStatus(enum.Enum):
    """Answer of the output function after a step."""

    CONTINUE = 0
    STOP = 1
    CONTINUE_STATE_CHANGED = 2
