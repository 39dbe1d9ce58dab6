from __future__ import annotations

from typing import Callable

from marketplace.core.exceptions import UnsupportedLenderTypeError
from marketplace.core.settings import Settings, settings as default_settings
from marketplace.lenders.base import LenderClient
from marketplace.lenders.capital_box import CapitalBoxClient
from marketplace.lenders.qred import QredClient
from marketplace.schemas.lender import LenderType

LENDER_CLIENTS: dict[LenderType, type[LenderClient]] = {
    LenderType.CAPITAL_BOX: CapitalBoxClient,
    LenderType.QRED: QredClient,
}

LenderClientFactory = Callable[[str], LenderClient]


def resolve_lender_type(value: str | LenderType) -> LenderType:
    try:
        return LenderType(value)
    except ValueError as exc:
        raise UnsupportedLenderTypeError(value) from exc


def build_lender_client(lender_type: str | LenderType, settings: Settings | None = None) -> LenderClient:
    client_cls = LENDER_CLIENTS.get(resolve_lender_type(lender_type))
    if client_cls is None:
        raise UnsupportedLenderTypeError(lender_type)
    return client_cls.from_settings(settings or default_settings)
