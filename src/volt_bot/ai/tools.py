"""Intent tools: the closed set of tool definitions offered to the LLM."""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any, Iterable

import pydantic

from volt_bot.ai.intents import (
    GetPricesOnlyArgs,
    GetQuotationArgs,
    GetStockArgs,
    Intent,
    MetalPricingArgs,
)
from volt_bot.core.errors import ValidationError
from volt_bot.core.types import QueryType
from volt_bot.log import get_logger

logger = get_logger(__name__)


def _constrain_tiers(schema: Any, tiers: list[str]) -> None:
    """Restrict every ``tier`` string property in a JSON schema to ``tiers``."""
    if isinstance(schema, dict):
        props = schema.get("properties")
        if isinstance(props, dict) and isinstance(props.get("tier"), dict):
            props["tier"]["enum"] = list(tiers)
        for value in schema.values():
            _constrain_tiers(value, tiers)
    elif isinstance(schema, list):
        for value in schema:
            _constrain_tiers(value, tiers)


class IntentTool(ABC):
    """One intent exposed to the model as a callable tool."""

    @property
    @abstractmethod
    def query_type(self) -> QueryType: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def args_model(self) -> type[pydantic.BaseModel]: ...

    @property
    def name(self) -> str:
        return self.query_type.value

    def input_schema(self, tiers: list[str] | None = None) -> dict[str, Any]:
        schema = copy.deepcopy(self.args_model.model_json_schema())
        if tiers:
            _constrain_tiers(schema, tiers)
        return schema

    def to_api_dict(self, tiers: list[str] | None = None) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema(tiers),
        }

    def parse(self, arguments: dict[str, Any], tiers: list[str] | None = None) -> Intent:
        context = {"tiers": tiers} if tiers else None
        try:
            args = self.args_model.model_validate(arguments, context=context)
        except pydantic.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"invalid {self.name} arguments: {problems}", tool_name=self.name) from e
        return Intent(query_type=self.query_type, args=args)  # type: ignore[arg-type]


class GetQuotationTool(IntentTool):
    query_type = QueryType.GET_QUOTATION
    args_model = GetQuotationArgs
    description = (
        "Prepare a full quotation with totals and 18% GST. Use when the customer asks for a "
        "quote, estimate or total for specific cables with lengths."
    )


class GetPricesOnlyTool(IntentTool):
    query_type = QueryType.GET_PRICES_ONLY
    args_model = GetPricesOnlyArgs
    description = (
        "Return per-metre prices for specific cables without quantities, totals or tax. Use when "
        "the customer asks for a rate or price of items but gives no lengths."
    )


class GetStockTool(IntentTool):
    query_type = QueryType.GET_STOCK
    args_model = GetStockArgs
    description = "Check stock availability of an item in the warehouse."


class MetalPricingTool(IntentTool):
    query_type = QueryType.METAL_PRICING
    args_model = MetalPricingArgs
    description = "Report current copper and/or aluminium spot prices per kg."


class IntentToolset:
    """Registry of the intent tools, bound to the configured discount tiers."""

    def __init__(self, tools: Iterable[IntentTool], tiers: list[str] | None = None):
        self._tools: dict[str, IntentTool] = {}
        self._tiers = list(tiers or [])
        for tool in tools:
            self.register(tool)

    @classmethod
    def default(cls, tiers: list[str] | None = None) -> "IntentToolset":
        return cls(
            [GetQuotationTool(), GetPricesOnlyTool(), GetStockTool(), MetalPricingTool()],
            tiers=tiers,
        )

    def register(self, tool: IntentTool) -> None:
        self._tools[tool.name] = tool
        logger.debug("intent_tool_registered", tool_name=tool.name)

    def definitions(self) -> list[dict[str, Any]]:
        return [tool.to_api_dict(self._tiers) for tool in self._tools.values()]

    def parse(self, name: str, arguments: Any) -> Intent:
        """Validate a tool call. Anything outside the closed set is a ValidationError."""
        tool = self._tools.get(name)
        if tool is None:
            raise ValidationError(f"unknown tool '{name}'", tool_name=name)
        if not isinstance(arguments, dict):
            raise ValidationError(f"{name} arguments must be an object", tool_name=name)
        return tool.parse(arguments, self._tiers)
