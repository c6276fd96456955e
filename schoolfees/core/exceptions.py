from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FeeResolutionError(ServiceError):
    """Fees for a student could not be resolved (missing student or failed read)."""

    def __init__(self, message: str, status_code: int = status.HTTP_404_NOT_FOUND) -> None:
        super().__init__(message, status_code)


class NotAuthenticatedError(ServiceError):
    """A write was attempted without an acting operator."""

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)
