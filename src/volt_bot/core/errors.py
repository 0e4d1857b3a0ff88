"""Error taxonomy for query fulfilment.

Every error carries a stable ``kind`` which is stored on the QuerySession row
so failures can be analysed later without parsing free-text messages.
"""

from __future__ import annotations

from typing import Optional


class VoltBotError(Exception):
    """Base class for all domain errors."""

    kind = "VoltBotError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class ValidationError(VoltBotError):
    """Intent arguments did not match the schema of any known intent."""

    kind = "ValidationError"

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message)
        self.tool_name = tool_name


class TransientProviderError(VoltBotError):
    """Network failure, timeout, API error or malformed tool-call payload."""

    kind = "TransientProviderError"

    def __init__(self, provider: str, message: str, input_tokens: int = 0, output_tokens: int = 0):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        # Populated when the provider answered (and billed) but the payload was unusable
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens

    @property
    def has_usage(self) -> bool:
        return bool(self.input_tokens or self.output_tokens)


class IntentResolutionFailed(VoltBotError):
    """All providers were exhausted without a valid intent."""

    kind = "IntentResolutionFailed"


class PricingError(VoltBotError):
    """A quotation line could not be priced."""

    kind = "PricingError"

    def __init__(self, message: str, line: Optional[int] = None, description: str = ""):
        prefix = f"line {line}: " if line is not None else ""
        super().__init__(f"{prefix}{message}")
        self.line = line
        self.description = description


class AdapterUnavailable(VoltBotError):
    """An external collaborator (ERP, price source) failed or timed out."""

    kind = "AdapterUnavailable"

    def __init__(self, adapter: str, message: str):
        super().__init__(f"{adapter}: {message}")
        self.adapter = adapter


class PriceUnavailable(AdapterUnavailable):
    """No price, fresh or stale, could be obtained for a metal."""

    kind = "PriceUnavailable"

    def __init__(self, metal: str, message: str = "no price available"):
        super().__init__("metal_prices", f"{metal}: {message}")
        self.metal = metal


class StalePrice(PriceUnavailable):
    """Only a stale price is cached and the caller demanded a fresh one."""

    kind = "StalePrice"


class LedgerError(VoltBotError):
    """No cost rate is effective for a billable event, or a rate change would rewrite billed history."""

    kind = "LedgerError"


class StorageError(VoltBotError):
    kind = "StorageError"
