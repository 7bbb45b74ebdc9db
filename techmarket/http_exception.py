from datetime import datetime, timezone

from fastapi import HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request


def _error_body(status_code: int, message, request: Request) -> dict:
    return {
        "statusCode": status_code,
        "message": message,
        "path": request.url.path,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> ORJSONResponse:
    logger.warning(f"HTTP {exc.status_code} em {request.method} {request.url.path}: {exc.detail}")
    return ORJSONResponse(
        _error_body(exc.status_code, exc.detail, request),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    # Uma mensagem por campo: "body.items.0.quantity: Input should be ..."
    messages = [
        ".".join(str(part) for part in error["loc"]) + ": " + error["msg"]
        for error in exc.errors()
    ]
    logger.warning(f"Requisição inválida em {request.method} {request.url.path}: {messages}")
    return ORJSONResponse(_error_body(422, messages, request), status_code=422)


async def unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    # Detalhe só no log; o cliente recebe mensagem genérica
    logger.opt(exception=exc).error(f"Erro não tratado em {request.method} {request.url.path}")
    return ORJSONResponse(
        _error_body(status.HTTP_500_INTERNAL_SERVER_ERROR, "Erro interno do servidor", request),
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


class CredentialsInvalidException(HTTPException):
    """
    Exception raised when credentials provided by the user are invalid.
    """

    def __init__(self, detail: str = "Credenciais inválidas"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(HTTPException):
    """
    Exception raised when the caller is authenticated but its role is not allowed.
    """

    def __init__(self, detail: str = "Acesso negado"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class ValidationException(HTTPException):
    """
    Exception raised when an input field is malformed or out of range.
    """

    def __init__(self, detail: str = "Dados inválidos"):
        super().__init__(
            status_code=422,
            detail=detail,
        )


class BusinessRuleException(HTTPException):
    """
    Exception raised when a request is well formed but breaks a business rule
    (total/price/name mismatch, insufficient stock, duplicate unique field...).
    """

    def __init__(self, detail: str = "Operação inválida"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class ResourceNotFoundException(HTTPException):
    """
    Exception raised when a requested resource is not found.
    """

    def __init__(self, detail: str = "Recurso não encontrado"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )


class ResourceConflictException(HTTPException):
    """
    Exception raised when a concurrent write won the race for the same resource.
    """

    def __init__(self, detail: str = "Conflito ao atualizar o recurso"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


class InternalServerErrorException(HTTPException):
    """
    Exception raised when an internal server error occurs.
    """

    def __init__(self, detail: str = "Erro interno do servidor"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
        )
