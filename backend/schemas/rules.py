"""Pydantic schemas for declarative rule files.

A rule file is YAML of the form::

    accounts:
      acc-123: "Assets:Chase Checking"
    rules:
      - match:
          payee: {contains: "STARBUCKS"}
          amount: {gt: 0}
          pending: false
        set:
          destination_account: "Expenses:Coffee"

Match values are normalized into tagged nodes (``kind`` discriminator)
according to the type of the field they test.
"""

from datetime import date
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Fields of TransactionView and the match node kind each one accepts.
FIELD_KINDS: dict[str, str] = {
    "account_id": "string",
    "source_account": "string",
    "destination_account": "string",
    "currency": "string",
    "payee": "string",
    "narration": "string",
    "tags": "string",
    "amount": "number",
    "pending": "bool",
    "date": "date",
}

# Fields a rule may rewrite.
SETTABLE_FIELDS = frozenset({"source_account", "destination_account", "payee", "narration"})


class StringMatch(BaseModel):
    """Exactly one string operator. A bare string in YAML becomes ``regex``."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["string"] = "string"
    regex: str | None = None
    equals: str | None = None
    one_of: list[str] | None = None
    prefix: str | None = None
    suffix: str | None = None
    contains: str | None = None
    ignore_case: bool = False

    @model_validator(mode="after")
    def _one_operator(self) -> "StringMatch":
        operators = [
            name for name in ("regex", "equals", "one_of", "prefix", "suffix", "contains")
            if getattr(self, name) is not None
        ]
        if len(operators) != 1:
            raise ValueError(
                f"string match needs exactly one operator, got {operators or 'none'}"
            )
        return self


class NumberMatch(BaseModel):
    """Bounds and/or equality on a decimal field; all given bounds must hold."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["number"] = "number"
    gt: Decimal | None = None
    ge: Decimal | None = None
    lt: Decimal | None = None
    le: Decimal | None = None
    equals: Decimal | None = None

    @model_validator(mode="after")
    def _any_operator(self) -> "NumberMatch":
        if all(getattr(self, name) is None for name in ("gt", "ge", "lt", "le", "equals")):
            raise ValueError("number match needs at least one of gt, ge, lt, le, equals")
        return self


class DateMatch(BaseModel):
    """Date range (``after``/``before`` exclusive) or an exact ``on`` date."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["date"] = "date"
    before: date | None = None
    after: date | None = None
    on: date | None = None

    @model_validator(mode="after")
    def _any_operator(self) -> "DateMatch":
        if self.before is None and self.after is None and self.on is None:
            raise ValueError("date match needs at least one of before, after, on")
        return self


class BoolMatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["bool"] = "bool"
    equals: bool


MatchNode = Annotated[
    Union[StringMatch, NumberMatch, DateMatch, BoolMatch],
    Field(discriminator="kind"),
]


def _normalize_node(field: str, value):
    """Turn a YAML match value into a tagged node dict for ``field``."""
    kind = FIELD_KINDS.get(field)
    if kind is None:
        raise ValueError(
            f"unknown match field {field!r}; expected one of {sorted(FIELD_KINDS)}"
        )
    if isinstance(value, dict):
        return {**value, "kind": kind}
    if kind == "string":
        return {"kind": kind, "regex": value}
    if kind == "date":
        return {"kind": kind, "on": value}
    return {"kind": kind, "equals": value}


class Rule(BaseModel):
    """One match -> set rewrite."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    match: dict[str, MatchNode] = {}
    assign: dict[str, str] = Field(alias="set")

    @field_validator("match", mode="before")
    @classmethod
    def _tag_match_nodes(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("match must be a mapping of field -> condition")
        return {field: _normalize_node(field, value) for field, value in v.items()}

    @field_validator("assign")
    @classmethod
    def _known_targets(cls, v: dict[str, str]) -> dict[str, str]:
        unknown = set(v) - SETTABLE_FIELDS
        if unknown:
            raise ValueError(
                f"cannot set {sorted(unknown)}; settable fields are {sorted(SETTABLE_FIELDS)}"
            )
        if not v:
            raise ValueError("set must name at least one field")
        return v


class RuleFile(BaseModel):
    """Top-level document of a rule file."""

    model_config = ConfigDict(extra="forbid")

    accounts: dict[str, str] = {}
    rules: list[Rule] = []
