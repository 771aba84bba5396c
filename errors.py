class InvalidParameter(ValueError):
    """Malformed query or body input; the request is rejected untouched."""


class InvalidTransaction(InvalidParameter):
    pass


class NotFound(ValueError):
    """Referenced entity does not exist in the account's scope."""
