"""
Engine error taxonomy.

Validation and conflict errors are raised before any state mutation, so the
caller can re-prompt with the tournament state untouched. Scheduling
exhaustion is not an exception; it is reported on ScheduleResult.
"""


class CourtsideError(Exception):
    """Base exception for tournament engine errors"""

    pass


class EngineValidationError(CourtsideError):
    """Input rejected before any state mutation"""

    pass


class InvalidScore(EngineValidationError):
    """Score out of range for the stage, or a tie where ties are not allowed"""

    pass


class EngineConflictError(CourtsideError):
    """Operation conflicts with the current tournament state"""

    pass


class DuplicateMatch(EngineConflictError):
    """An equivalent match is already in the match log"""

    pass


class NotEditable(EngineConflictError):
    """Match cannot be edited through the generic edit path"""

    pass


class NoActiveMatchOnCourt(EngineConflictError):
    """Court index is out of range or holds no match in progress"""

    pass


class SetProtocolError(EngineConflictError):
    """Final set / tiebreak step recorded out of order"""

    pass


class GroupSetupError(EngineConflictError):
    """Social group assignment is invalid or the stage does not allow it"""

    pass


class MatchNotFound(CourtsideError):
    """No match with the requested id"""

    pass


class SchedulerInvariantError(CourtsideError):
    """Self-repair could not produce an assignment with each team on one court"""

    pass
