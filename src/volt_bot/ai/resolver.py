"""Intent resolver: text + context -> one validated intent, with provider failover."""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from volt_bot.ai.conversation import build_messages
from volt_bot.ai.intents import Intent
from volt_bot.ai.providers import IntentProvider, IntentRequest, ProviderReply
from volt_bot.ai.tools import IntentToolset
from volt_bot.billing.ledger import CostLedger
from volt_bot.core.errors import IntentResolutionFailed, TransientProviderError, ValidationError
from volt_bot.log import get_logger
from volt_bot.storage.models import ConversationMessage

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = """\
You are the order desk assistant of an electrical cable trader in India.
Every customer message must be answered with exactly one tool call:

- get_quotation: the customer wants a quotation or total for cables with lengths.
- get_prices_only: the customer wants per-metre rates for cables without lengths.
- get_stock: the customer asks whether an item is available.
- metal_pricing: the customer asks for copper or aluminium prices.

Sizes are in sq. mm and lengths in metres. Use "copper" or "aluminium" for the
conductor. Insulation is XLPE unless PVC is stated. FRLS applies only when the
customer says FRLS. Use the customer's discount tier when stated, otherwise the
default tier. Earlier turns of the conversation are context for follow-ups."""


class IntentResolver:
    """Resolve a message to one of the four intents.

    The first provider is tried up to ``primary_attempts`` times on transient
    failures; each remaining provider once. A reply that fails validation is
    not retried on the same provider. Every attempt is billed on the ledger.
    """

    def __init__(
        self,
        providers: Sequence[IntentProvider],
        toolset: IntentToolset,
        system_prompt: str = "",
        timeout: float = 45.0,
        primary_attempts: int = 2,
    ):
        if not providers:
            raise ValueError("At least one provider is required")
        self._providers = list(providers)
        self._toolset = toolset
        self._system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self._timeout = timeout
        self._primary_attempts = max(1, primary_attempts)

    def build_request(self, text: str, history: Sequence[ConversationMessage]) -> IntentRequest:
        return IntentRequest(
            system=self._system_prompt,
            messages=tuple(build_messages(history, text)),
            tools=tuple(self._toolset.definitions()),
        )

    async def resolve(
        self,
        text: str,
        history: Sequence[ConversationMessage],
        ledger: CostLedger,
    ) -> Intent:
        request = self.build_request(text, history)
        validation_error: Optional[ValidationError] = None
        failures: list[str] = []

        for index, provider in enumerate(self._providers):
            attempts = self._primary_attempts if index == 0 else 1
            for attempt in range(1, attempts + 1):
                reply = await self._call(provider, request, attempt, ledger, failures)
                if reply is None:
                    continue
                try:
                    intent = self._toolset.parse(reply.tool_call.name, reply.tool_call.arguments)
                except ValidationError as e:
                    logger.warning(
                        "intent_validation_failed",
                        provider=provider.name,
                        tool_name=reply.tool_call.name,
                        error=e.message,
                    )
                    validation_error = e
                    failures.append(f"{provider.name}: {e.message}")
                    break
                logger.info(
                    "intent_resolved",
                    provider=provider.name,
                    attempt=attempt,
                    query_type=str(intent.query_type),
                )
                return Intent(query_type=intent.query_type, args=intent.args, provider=provider.name)

        if validation_error is not None:
            raise validation_error
        raise IntentResolutionFailed("all providers failed: " + "; ".join(failures))

    async def _call(
        self,
        provider: IntentProvider,
        request: IntentRequest,
        attempt: int,
        ledger: CostLedger,
        failures: list[str],
    ) -> Optional[ProviderReply]:
        """One billed provider attempt. Returns None on a transient failure."""
        try:
            reply = await asyncio.wait_for(provider.resolve_intent(request), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("provider_timeout", provider=provider.name, attempt=attempt, timeout=self._timeout)
            ledger.failed_call(provider.name, "timeout", {"attempt": attempt})
            failures.append(f"{provider.name}: timeout")
            return None
        except TransientProviderError as e:
            logger.warning("provider_failed", provider=provider.name, attempt=attempt, error=e.message)
            if e.has_usage:
                ledger.provider_call(
                    provider.name, e.input_tokens, e.output_tokens, {"attempt": attempt, "error": e.message}
                )
            else:
                ledger.failed_call(provider.name, e.message, {"attempt": attempt})
            failures.append(e.message)
            return None

        ledger.provider_call(
            provider.name,
            reply.input_tokens,
            reply.output_tokens,
            {"attempt": attempt, "model": reply.model, "tool": reply.tool_call.name},
        )
        return reply
