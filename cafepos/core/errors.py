"""
Error taxonomy shared by the register engine and the domain rules.

GuardError and PolicyError are raised before any request is issued and
leave every cached value untouched. ConflictError and TransportError come
back from the server (or the wire) and trigger an optimistic rollback.
"""


class PosError(Exception):
    kind = "error"

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        self.message = message or code
        super().__init__(self.message)

    def __repr__(self):
        return f"{type(self).__name__}({self.code!r})"


class GuardError(PosError):
    kind = "validation"


class PolicyError(PosError):
    kind = "policy"


class ConflictError(PosError):
    kind = "conflict"

    def __init__(self, code: str, message: str | None = None, status_code: int = 409):
        super().__init__(code, message)
        self.status_code = status_code


class TransportError(PosError):
    kind = "transport"


# HTTP status used by the server for each domain code
HTTP_STATUS = {
    "ORDER_NOT_FOUND": 404,
    "TABLE_NOT_FOUND": 404,
    "SHIFT_NOT_FOUND": 404,
    "TABLE_REQUIRED": 422,
    "TABLE_NOT_ALLOWED": 422,
    "ORDER_EMPTY": 422,
    "REASON_REQUIRED": 422,
    "MERGE_TOO_FEW": 422,
    "TABLE_SAME": 422,
}


def http_status_for(code: str) -> int:
    return HTTP_STATUS.get(code, 409)
