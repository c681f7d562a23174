"""
Domain exceptions.

Managers raise ``ValueError`` for invalid operations; the subclasses here let
callers tell the common business-rule rejections apart.
"""


class DuplicatePaymentError(ValueError):
    """A payment already exists for this loan on the same calendar day"""


class LoanLimitExceeded(ValueError):
    """Customer already holds the maximum number of loan numbers"""


class CalendarInputError(TypeError):
    """Calendar was asked to render something that is not a list of loans"""


class NotFoundError(ValueError):
    """Referenced customer, loan, request or team member does not exist"""
