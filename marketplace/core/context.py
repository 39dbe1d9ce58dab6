import contextvars

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")
_lender_reference: contextvars.ContextVar[str] = contextvars.ContextVar("lender_reference", default="-")


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def set_lender_reference(reference: str) -> None:
    _lender_reference.set(reference)


def get_lender_reference() -> str:
    return _lender_reference.get()


def clear_context() -> None:
    _request_id.set("-")
    _lender_reference.set("-")
