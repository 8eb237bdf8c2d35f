from fastapi import status


class ServiceError(Exception):
    """
    Business-rule failure raised by the fee services; routers answer with status_code.
    400 bad input or a ledger rule, 404 record not in the caller's tenant, 409 conflicting state.
    """

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"ServiceError({self.status_code}, {self.message!r})"
