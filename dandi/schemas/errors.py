from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str


class DandiError(Exception):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message)


class ListKeysError(DandiError):
    def __init__(self):
        super().__init__(message="Database error", status_code=500)


class CreateKeyError(DandiError):
    def __init__(self):
        super().__init__(message="Failed to create API key", status_code=500)


class DeleteKeyError(DandiError):
    def __init__(self):
        super().__init__(message="Failed to delete API key", status_code=500)


class UpdateKeyUsageError(DandiError):
    def __init__(self):
        super().__init__(message="Failed to update API key usage", status_code=500)


class InternalServerError(DandiError):
    def __init__(self):
        super().__init__(message="Internal Server Error", status_code=500)
