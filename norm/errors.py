import typing


class NormError(Exception):
    pass


class ConfigurationError(NormError):
    pass


class DuplicateKeyError(ConfigurationError):
    pass


class UnknownKeyError(ConfigurationError):
    pass


class InvalidForeignKeyError(ConfigurationError):
    pass


class DuplicateConnectionError(ConfigurationError):
    pass


class UnknownConnectionError(ConfigurationError):
    pass


class DuplicateEntityError(ConfigurationError):
    pass


class UnknownEntityError(ConfigurationError):
    pass


class UnknownFieldError(ConfigurationError):
    pass


class EntityWithoutIdentity(ConfigurationError):
    pass


class ValidationError(NormError):
    pass


class InvalidSelectorError(ValidationError):
    pass


class MultiColumnKeyError(ValidationError):
    pass


class InvalidFieldValueError(ValidationError):
    pass


class ConversionError(ValidationError):
    pass


class UnsupportedOperationError(ValidationError):
    pass


class UndeclaredRelationError(ValidationError):
    pass


class MultiColumnTraversalError(ValidationError):
    pass


class PaginationError(ValidationError):
    pass


class ConsistencyError(NormError):
    pass


class AmbiguousResultError(ConsistencyError):
    pass


class ConcurrentModificationError(ConsistencyError):
    pass


class MissingIdentityError(ConsistencyError):
    pass


class AlreadyPersistedError(ConsistencyError):
    pass


class BackendError(NormError):
    """Failure reported by the database driver, carrying the statement that caused it."""

    def __init__(self, message: str, sql: typing.Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.sql = sql

    def __str__(self) -> str:
        if self.sql is None:
            return self.message
        return f"{self.message}: {self.sql}"
