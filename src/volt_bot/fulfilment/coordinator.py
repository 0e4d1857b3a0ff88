"""Query fulfilment: one inbound message from receipt to committed audit record."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, assert_never

from volt_bot.adapters.base import StockLookup
from volt_bot.ai.intents import GetPricesOnlyArgs, GetQuotationArgs, GetStockArgs, Intent, MetalPricingArgs
from volt_bot.ai.resolver import IntentResolver
from volt_bot.billing.ledger import CostLedger
from volt_bot.core.errors import AdapterUnavailable, LedgerError, VoltBotError
from volt_bot.core.sequencer import UserSequencer
from volt_bot.core.types import FulfilmentState, Platform, QueryType, ResponseType
from volt_bot.fulfilment import replies
from volt_bot.fulfilment.documents import QuotationDocument, build_quotation_document
from volt_bot.log import get_logger
from volt_bot.pricing.engine import build_quotation, price_lines, required_metals
from volt_bot.pricing.models import PriceSnapshot, Quotation, QuoteLine
from volt_bot.pricing.price_cache import PriceCache
from volt_bot.pricing.products import Product
from volt_bot.pricing.table import PricingTable
from volt_bot.services.error_alerts import ErrorAlertService
from volt_bot.storage.conversation_repo import ConversationRepository
from volt_bot.storage.models import ConversationMessage, QuerySession, utcnow
from volt_bot.storage.rate_repo import CostRateRepository
from volt_bot.storage.session_repo import QuerySessionRepository
from volt_bot.storage.user_repo import UserRepository

logger = get_logger(__name__)

INTERNAL_ERROR = "InternalError"
USER_NOT_ACTIVE = "UserNotActive"

# Failures worth an admin's attention; bad user input is not one of them
ALERT_KINDS = frozenset(
    {
        INTERNAL_ERROR,
        "AdapterUnavailable",
        "PriceUnavailable",
        "StalePrice",
        "IntentResolutionFailed",
        "LedgerError",
        "StorageError",
    }
)

_TRANSITIONS: dict[FulfilmentState, frozenset[FulfilmentState]] = {
    FulfilmentState.RECEIVED: frozenset({FulfilmentState.CONTEXT_LOADED, FulfilmentState.ERRORED}),
    FulfilmentState.CONTEXT_LOADED: frozenset({FulfilmentState.INTENT_RESOLVED, FulfilmentState.ERRORED}),
    FulfilmentState.INTENT_RESOLVED: frozenset({FulfilmentState.DISPATCHED, FulfilmentState.ERRORED}),
    FulfilmentState.DISPATCHED: frozenset({FulfilmentState.RESPONDED, FulfilmentState.ERRORED}),
    FulfilmentState.RESPONDED: frozenset(),
    FulfilmentState.ERRORED: frozenset(),
}


@dataclass(frozen=True)
class Response:
    text: str
    response_type: ResponseType
    query_type: QueryType
    state: FulfilmentState
    session_id: Optional[str] = None
    error_kind: Optional[str] = None
    document: Optional[QuotationDocument] = None


class FulfilmentRun:
    """State of one message as it moves through the pipeline."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.state = FulfilmentState.RECEIVED

    def advance(self, new_state: FulfilmentState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid transition {self.state} -> {new_state}")
        logger.debug("fulfilment_state", session_id=self.session_id, old=str(self.state), new=str(new_state))
        self.state = new_state


class QueryFulfilment:
    """Ties the resolver, pricing and adapters together per inbound message.

    This is the only writer of QuerySession and CostEvent rows. Messages of one
    user are processed strictly in arrival order; different users run
    concurrently.
    """

    def __init__(
        self,
        users: UserRepository,
        conversations: ConversationRepository,
        sessions: QuerySessionRepository,
        rates: CostRateRepository,
        resolver: IntentResolver,
        price_cache: PriceCache,
        stock: StockLookup,
        pricing_table: PricingTable,
        sequencer: Optional[UserSequencer] = None,
        context_messages: int = 6,
        adapter_timeout: float = 15.0,
        quotation_pdf: bool = True,
        company_name: str = "",
        error_alerts: Optional[ErrorAlertService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._users = users
        self._conversations = conversations
        self._sessions = sessions
        self._rates = rates
        self._resolver = resolver
        self._price_cache = price_cache
        self._stock = stock
        self._table = pricing_table
        self._sequencer = sequencer or UserSequencer()
        self._context_messages = context_messages
        self._adapter_timeout = adapter_timeout
        self._clock = clock
        self._quotation_pdf = quotation_pdf
        self._company_name = company_name
        self._error_alerts = error_alerts

    @property
    def pricing_table(self) -> PricingTable:
        return self._table

    async def handle_message(self, platform: Platform, sender_id: str, text: str) -> Response:
        async with self._sequencer.hold(f"{platform}:{sender_id}"):
            return await self._fulfil(platform, sender_id, text)

    async def _fulfil(self, platform: Platform, sender_id: str, text: str) -> Response:
        started = time.monotonic()
        received_at = self._clock()
        run = FulfilmentRun(str(uuid.uuid4()))
        user, created = await self._users.get_or_create(platform, sender_id)
        ledger = CostLedger(run.session_id, platform, await self._rates.rate_book(), user.id, self._clock)

        conversation_id: Optional[str] = None
        intent: Optional[Intent] = None
        error: Optional[VoltBotError] = None
        error_kind: Optional[str] = None
        structured: Optional[dict[str, Any]] = None
        document: Optional[QuotationDocument] = None
        reply = ""

        try:
            ledger.message("incoming")
            if not user.is_active:
                logger.info("user_gated", user_id=user.id, status=str(user.status), new=created)
                error_kind = USER_NOT_ACTIVE
                error = VoltBotError(f"user is {user.status}")
                reply = replies.gate_reply(user.status)
                run.advance(FulfilmentState.ERRORED)
            else:
                conversation = await self._conversations.get_or_start(user.id, received_at)
                conversation_id = conversation.id
                history = await self._conversations.recent_messages(conversation.id, self._context_messages)
                run.advance(FulfilmentState.CONTEXT_LOADED)

                intent = await self._resolver.resolve(text, history, ledger)
                run.advance(FulfilmentState.INTENT_RESOLVED)

                run.advance(FulfilmentState.DISPATCHED)
                reply, result, document = await self._dispatch(intent, ledger, run.session_id, received_at)
                structured = {
                    "intent": intent.query_type.value,
                    "arguments": intent.args.model_dump(mode="json"),
                    "result": result,
                }
                run.advance(FulfilmentState.RESPONDED)
        except VoltBotError as e:
            logger.warning("fulfilment_failed", session_id=run.session_id, kind=e.kind, error=e.message)
            error, error_kind = e, e.kind
            reply = replies.error_reply(e)
            run.advance(FulfilmentState.ERRORED)
        except Exception as e:
            logger.exception("fulfilment_internal_error", session_id=run.session_id)
            error, error_kind = VoltBotError(str(e) or type(e).__name__), INTERNAL_ERROR
            reply = replies.error_reply(None)
            run.advance(FulfilmentState.ERRORED)

        try:
            ledger.message("outgoing")
        except LedgerError as e:
            logger.warning("fulfilment_failed", session_id=run.session_id, kind=e.kind, error=e.message)
            if error is None:
                error, error_kind = e, e.kind
                reply = replies.error_reply(e)
                structured = None
                document = None
                run.state = FulfilmentState.ERRORED

        succeeded = error is None
        session = QuerySession(
            id=run.session_id,
            user_id=user.id,
            conversation_id=conversation_id,
            query_text=text,
            query_type=intent.query_type if intent else QueryType.UNRESOLVED,
            response_type=ResponseType.SUCCESS if succeeded else ResponseType.ERROR,
            platform=platform,
            total_cost=ledger.total,
            error_message=None if succeeded else f"{error_kind}: {error.message}",
            processing_time_ms=int((time.monotonic() - started) * 1000),
            created_at=received_at,
        )
        message = None
        if succeeded and conversation_id is not None:
            message = ConversationMessage(
                conversation_id=conversation_id,
                session_id=run.session_id,
                user_query=text,
                structured_response=structured,
                created_at=received_at,
            )
        try:
            await self._sessions.commit(session, ledger.events, message)
        except Exception as e:
            kind = e.kind if isinstance(e, VoltBotError) else INTERNAL_ERROR
            self._alert(kind, f"session not recorded: {e}", run.session_id)
            raise
        if error_kind in ALERT_KINDS:
            self._alert(error_kind, error.message, run.session_id)

        return Response(
            text=reply,
            response_type=session.response_type,
            query_type=session.query_type,
            state=run.state,
            session_id=run.session_id,
            error_kind=error_kind,
            document=document,
        )

    def _alert(self, kind: str, message: str, session_id: str) -> None:
        if self._error_alerts is not None:
            self._error_alerts.report(kind, message, session_id)

    async def _prices(self, products: list[Product]) -> PriceSnapshot:
        metals = required_metals(products, self._table)
        if not metals:
            return PriceSnapshot()
        return await self._price_cache.snapshot(metals)

    async def _quotation_document(
        self, quotation: Quotation, session_id: str, issued_at: datetime
    ) -> Optional[QuotationDocument]:
        """The PDF for a quotation, or None when disabled or rendering failed."""
        if not self._quotation_pdf:
            return None
        try:
            return await asyncio.to_thread(
                build_quotation_document, quotation, session_id, issued_at, self._company_name
            )
        except Exception as e:
            # The text reply already carries the full quotation
            logger.exception("quotation_pdf_failed", session_id=session_id)
            self._alert(INTERNAL_ERROR, f"quotation PDF not rendered: {e}", session_id)
            return None

    async def _dispatch(
        self, intent: Intent, ledger: CostLedger, session_id: str, issued_at: datetime
    ) -> tuple[str, dict[str, Any], Optional[QuotationDocument]]:
        args = intent.args
        match args:
            case GetQuotationArgs():
                lines = [QuoteLine(product=i.product, quantity=i.quantity, tier=i.tier) for i in args.items]
                snapshot = await self._prices([ql.product for ql in lines])
                quotation = build_quotation(lines, snapshot, self._table, args.delivery_charges)
                stale = any(p.stale for p in snapshot.prices.values())
                document = await self._quotation_document(quotation, session_id, issued_at)
                result = {
                    "items": [
                        {"description": it.description, "quantity": it.quantity, "line_total": str(it.line_total)}
                        for it in quotation.items
                    ],
                    "gst": str(quotation.gst),
                    "grand_total": str(quotation.grand_total),
                    "document": document.number if document else None,
                }
                return replies.format_quotation(quotation, stale=stale), result, document
            case GetPricesOnlyArgs():
                lines = [QuoteLine(product=i.product, quantity=1, tier=i.tier) for i in args.items]
                snapshot = await self._prices([ql.product for ql in lines])
                items = price_lines(lines, snapshot, self._table)
                stale = any(p.stale for p in snapshot.prices.values())
                return replies.format_prices(items, snapshot.as_of, stale=stale), {
                    "prices": [{"description": it.description, "unit_price": str(it.line_total)} for it in items],
                }, None
            case GetStockArgs():
                try:
                    availability = await asyncio.wait_for(
                        self._stock.lookup_stock(args.query), timeout=self._adapter_timeout
                    )
                except AdapterUnavailable as e:
                    ledger.erp_call(ok=False, error=e.message)
                    raise
                except asyncio.TimeoutError as e:
                    ledger.erp_call(ok=False, error="timeout")
                    raise AdapterUnavailable("erp", "request timeout") from e
                ledger.erp_call(ok=True)
                return replies.format_stock(availability), {"stock_info": availability.stock_info}, None
            case MetalPricingArgs():
                snapshot = await self._price_cache.snapshot(args.metals)
                return replies.format_metal_prices(snapshot), {
                    str(metal): {"price": str(spot.price), "as_of": spot.as_of.isoformat(), "stale": spot.stale}
                    for metal, spot in snapshot.prices.items()
                }, None
            case _:
                assert_never(args)
