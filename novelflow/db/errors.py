"""Error taxonomy for the local store."""


class StoreError(Exception):
    """Base class for every error raised by the store."""

    retryable: bool = False


class InitializationError(StoreError):
    """The database could not be brought to the latest schema.

    Fatal: the application must not continue with a partially migrated file.
    """

    pass


class NotFoundError(StoreError):
    """A referenced entity id does not exist."""

    def __init__(self, entity: str, entity_id: str | int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConstraintViolationError(StoreError):
    """A foreign key, check or uniqueness rule was violated."""

    pass


class StoreBusyError(StoreError):
    """The store lock could not be acquired within the bounded wait."""

    retryable = True


class SerializationError(StoreError):
    """A document column could not be decoded by its caller."""

    pass
