from fastapi import HTTPException, status


class AccessDeniedError(HTTPException):
    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class ModuleAccessError(HTTPException):
    def __init__(self, detail: str = "Module not available on the current subscription"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class AccessContextError(HTTPException):
    def __init__(
        self,
        detail: str = "Access context not available - ensure the request carries one",
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
        )
