"""Exception kinds raised by the Koopman mode estimators."""


class KoopmanError(Exception):
    """Base class for every error raised by the estimators and the harness."""


class InvalidInput(KoopmanError, ValueError):
    """Data matrix is malformed: non-finite values, wrong shape or size mismatch."""


class InvalidParameter(KoopmanError, ValueError):
    """A scalar parameter (dt, window length, rank cap, ...) is out of range."""


class RankDeficiency(KoopmanError):
    """Rank truncation left an empty basis."""


class NumericalInstability(KoopmanError, ArithmeticError):
    """An intermediate result became singular or non-finite."""
