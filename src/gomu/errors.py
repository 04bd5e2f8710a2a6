"""Error taxonomy shared by the façade and the marketplace adapters."""

from __future__ import annotations

import json

from gomu.models import ErrorInfo, MarketplaceName


class GomuError(Exception):
    """Base class for errors raised by this package."""


class ValidationError(GomuError, ValueError):
    """Caller input is structurally invalid. Raised before any marketplace call."""


class UnsupportedOperationError(GomuError):
    """A marketplace cannot express the requested order."""


class AdapterConstructionError(GomuError):
    """A marketplace adapter could not be built for the configured chain."""

    def __init__(self, marketplace_name: MarketplaceName, cause: BaseException) -> None:
        super().__init__(f"{marketplace_name} disabled: {cause}")
        self.marketplace_name = marketplace_name
        self.__cause__ = cause


class MarketplaceCallError(GomuError):
    """A marketplace API or contract call failed."""

    def __init__(self, marketplace_name: MarketplaceName, message: str) -> None:
        super().__init__(message)
        self.marketplace_name = marketplace_name
        self.message = message


class TransactionRevertedError(GomuError):
    """A submitted transaction was mined with a failure status."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"transaction {tx_hash} reverted")
        self.tx_hash = tx_hash


class MarketplaceLookupError(GomuError, LookupError):
    """An order cannot be routed back to a registered marketplace."""


def format_error(exc: BaseException) -> ErrorInfo:
    """Reduce any adapter failure to ``{message, cause}``."""
    message = getattr(exc, "message", None)
    if not isinstance(message, str):
        message = _describe(exc)
    return ErrorInfo(message=message, cause=exc)


def _describe(exc: BaseException) -> str:
    if len(exc.args) == 1 and isinstance(exc.args[0], str):
        return exc.args[0]
    if not exc.args:
        return str(exc) or type(exc).__name__
    payload = exc.args[0] if len(exc.args) == 1 else list(exc.args)
    try:
        return json.dumps(payload)
    except (TypeError, ValueError):
        return str(exc)
