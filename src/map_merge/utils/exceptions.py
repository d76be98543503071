"""Exception hierarchy for map merging."""


class MapMergeError(Exception):
    """Base class for all map merging errors."""


class InputContractError(MapMergeError, ValueError):
    """Inputs violate a precondition (mismatched sizes, empty descriptor sets).

    Fatal: aborts the whole pipeline run.
    """


class RegistrationError(MapMergeError):
    """A pairwise registration could not produce a usable transform.

    Recoverable: only the affected pair is discarded.
    """


class DegenerateScoreError(RegistrationError):
    """Registration score is zero or non-finite, so no confidence can be derived."""
