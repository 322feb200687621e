from enum import Enum


class TurnPhase(Enum):
    """Where a turn is, or how it ended.

    ``handle`` returns one of the last four; the others name the step a
    failed turn was in when it is logged.
    """

    WAIT_INIT = "wait_init"
    ENSURE_GREETING = "ensure_greeting"
    RUN_AGENT = "run_agent"
    CLASSIFY_RESULT = "classify_result"
    REPLY = "reply"
    TRANSFER = "transfer"
    ERROR = "error"
    SKIPPED = "skipped"
