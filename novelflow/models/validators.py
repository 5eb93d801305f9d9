"""Shared field validators for partial-update models."""


def reject_null(value):
    """Refuse an explicit null for a field whose column is NOT NULL.

    Omitting the field leaves the stored value alone; sending ``null`` would
    otherwise reach the database as an attempt to clear it.
    """
    if value is None:
        raise ValueError("may not be null")
    return value
