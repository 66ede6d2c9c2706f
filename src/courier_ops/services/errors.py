"""Lookup errors shared by the assignment and settlement services."""


class OrderNotFoundError(LookupError):
    pass


class ZoneNotFoundError(LookupError):
    pass
