from __future__ import annotations


class AppError(Exception):
    pass


class BusinessError(AppError):
    pass


class ValidationError(BusinessError):
    pass


class StockError(BusinessError):
    pass


class InfraError(AppError):
    pass


class PersistenceError(InfraError):
    pass


class ExternalServiceError(InfraError):
    pass


class NotFoundError(ExternalServiceError):
    pass


class RemoteConfigError(ExternalServiceError):
    pass


class AtomicityFallbackError(ExternalServiceError):
    pass


class TransientExternalError(ExternalServiceError):
    pass


class TransportError(TransientExternalError):
    pass


def is_retryable(exc: BaseException) -> bool:
    """Validation and not-found failures are final; everything else may succeed later."""
    return not isinstance(exc, (ValidationError, NotFoundError))
