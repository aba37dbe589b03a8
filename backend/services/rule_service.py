"""Rule transformer: rewrites the rendered projection of ledger transactions.

Rule files are YAML documents validated by :mod:`schemas.rules` and compiled
once into plain Python callables. Each file becomes one
``transform(view) -> view`` step; files run in the order given. Within a
file, account aliases are applied first, then the first rule whose match
holds rewrites the view.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Sequence

import yaml
from pydantic import ValidationError

from config import settings
from integrations.currency import Money
from integrations.provider_protocol import CanonicalTransaction, TransactionStatus
from schemas.rules import BoolMatch, DateMatch, NumberMatch, Rule, RuleFile, StringMatch
from services.errors import RuleError, RuleEvaluationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionView:
    """Read-only projection of a transaction that rules match on and rewrite."""

    account_id: str
    source_account: str
    destination_account: str
    amount: Decimal
    currency: str
    payee: str | None
    narration: str
    pending: bool
    date: date
    tags: tuple[str, ...] = ()

    @classmethod
    def of(
        cls, transaction: CanonicalTransaction, source_account: str | None = None
    ) -> "TransactionView":
        """Project a canonical transaction.

        The first posting is the funding posting, the second the offset.
        ``amount`` is the offset posting's amount (positive for outflows).
        """
        if len(transaction.postings) < 2:
            raise RuleEvaluationError(
                f"Transaction {transaction.id} has fewer than two postings"
            )
        funding, offset = transaction.postings[0], transaction.postings[1]
        return cls(
            account_id=funding.account,
            source_account=source_account or funding.account,
            destination_account=offset.account,
            amount=offset.units.amount,
            currency=offset.units.currency,
            payee=transaction.payee,
            narration=transaction.narration,
            pending=transaction.status is TransactionStatus.PENDING,
            date=transaction.date,
            tags=tuple(transaction.tags),
        )


@dataclass(frozen=True)
class RenderedPosting:
    account: str
    units: Money


@dataclass(frozen=True)
class RenderedTransaction:
    """A transaction after rules ran, ready to be formatted."""

    id: str
    date: date
    pending: bool
    payee: str | None
    narration: str
    postings: tuple[RenderedPosting, ...]
    tags: tuple[str, ...] = ()
    links: tuple[str, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)


Predicate = Callable[[TransactionView], bool]
Transform = Callable[[TransactionView], TransactionView]


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def _compile_string(node: StringMatch) -> Callable[[str], bool]:
    if node.regex is not None:
        try:
            pattern = re.compile(node.regex, re.IGNORECASE if node.ignore_case else 0)
        except re.error as e:
            raise RuleError(f"invalid regex {node.regex!r}: {e}") from e
        return lambda value: pattern.search(value) is not None

    fold = (lambda s: s.casefold()) if node.ignore_case else (lambda s: s)
    if node.equals is not None:
        expected = fold(node.equals)
        return lambda value: fold(value) == expected
    if node.one_of is not None:
        options = {fold(option) for option in node.one_of}
        return lambda value: fold(value) in options
    if node.prefix is not None:
        prefix = fold(node.prefix)
        return lambda value: fold(value).startswith(prefix)
    if node.suffix is not None:
        suffix = fold(node.suffix)
        return lambda value: fold(value).endswith(suffix)
    needle = fold(node.contains)
    return lambda value: needle in fold(value)


def _compile_number(node: NumberMatch) -> Callable[[Decimal], bool]:
    checks = []
    if node.gt is not None:
        checks.append(lambda v, b=node.gt: v > b)
    if node.ge is not None:
        checks.append(lambda v, b=node.ge: v >= b)
    if node.lt is not None:
        checks.append(lambda v, b=node.lt: v < b)
    if node.le is not None:
        checks.append(lambda v, b=node.le: v <= b)
    if node.equals is not None:
        checks.append(lambda v, b=node.equals: v == b)
    return lambda value: all(check(value) for check in checks)


def _compile_date(node: DateMatch) -> Callable[[date], bool]:
    def matches(value: date) -> bool:
        if node.on is not None and value != node.on:
            return False
        if node.after is not None and not value > node.after:
            return False
        if node.before is not None and not value < node.before:
            return False
        return True

    return matches


def _compile_condition(field_name: str, node) -> Predicate:
    if isinstance(node, StringMatch):
        test = _compile_string(node)
        if field_name == "tags":
            return lambda view: any(test(tag) for tag in view.tags)
        return lambda view: test(getattr(view, field_name) or "")
    if isinstance(node, NumberMatch):
        test = _compile_number(node)
        return lambda view: test(getattr(view, field_name))
    if isinstance(node, DateMatch):
        test = _compile_date(node)
        return lambda view: test(getattr(view, field_name))
    if isinstance(node, BoolMatch):
        return lambda view: bool(getattr(view, field_name)) is node.equals
    raise RuleError(f"unsupported match node for {field_name!r}: {node!r}")


def _render_template(template: str, view: TransactionView, target: str, origin: str) -> str:
    try:
        value = template.format(**vars(view))
    except KeyError as e:
        raise RuleEvaluationError(
            f"{origin}: template {template!r} for {target} references unknown field {e}"
        ) from e
    except (IndexError, ValueError, AttributeError) as e:
        raise RuleEvaluationError(
            f"{origin}: template {template!r} for {target} is invalid: {e}"
        ) from e
    if target.endswith("_account") and not value.strip():
        raise RuleEvaluationError(f"{origin}: rule set {target} to an empty account name")
    return value


@dataclass(frozen=True)
class CompiledRule:
    conditions: tuple[Predicate, ...]
    assign: tuple[tuple[str, str], ...]

    def matches(self, view: TransactionView) -> bool:
        return all(condition(view) for condition in self.conditions)


class CompiledRuleFile:
    """The compiled ``transform`` of one rule file."""

    def __init__(self, origin: str, aliases: dict[str, str], rules: list[CompiledRule]):
        self.origin = origin
        self._aliases = aliases
        self._rules = rules

    def __call__(self, view: TransactionView) -> TransactionView:
        return self.transform(view)

    def transform(self, view: TransactionView) -> TransactionView:
        alias = self._aliases.get(view.account_id)
        if alias:
            view = replace(view, source_account=alias)

        for rule in self._rules:
            if rule.matches(view):
                changes = {
                    target: _render_template(template, view, target, self.origin)
                    for target, template in rule.assign
                }
                return replace(view, **changes)
        return view


def compile_rule_document(document: RuleFile, origin: str = "<rules>") -> CompiledRuleFile:
    """Compile a validated rule document into its transform."""
    rules = []
    for index, rule in enumerate(document.rules):
        try:
            conditions = tuple(
                _compile_condition(field_name, node) for field_name, node in rule.match.items()
            )
        except RuleError as e:
            raise RuleError(f"{origin}: rule #{index + 1}: {e}") from e
        rules.append(CompiledRule(conditions=conditions, assign=tuple(rule.assign.items())))
    return CompiledRuleFile(origin, dict(document.accounts), rules)


def compile_rule_file(path: str | Path) -> CompiledRuleFile:
    """Load, validate and compile one YAML rule file.

    Raises:
        RuleError: If the file is missing, not YAML, or not a valid rule document.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise RuleError(f"cannot read rule file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise RuleError(f"rule file {path} is not valid YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise RuleError(f"rule file {path} must contain a mapping at the top level")

    try:
        document = RuleFile.model_validate(data)
    except ValidationError as e:
        raise RuleError(f"rule file {path} is invalid: {e}") from e

    compiled = compile_rule_document(document, origin=str(path))
    logger.debug(
        "Compiled %s: %d rules, %d account aliases",
        path, len(document.rules), len(document.accounts),
    )
    return compiled


# ---------------------------------------------------------------------------
# Transformer
# ---------------------------------------------------------------------------


class RuleTransformer:
    """Stateless chain of compiled rule transforms.

    With no transforms, :meth:`apply` is the identity projection.
    """

    def __init__(self, transforms: Sequence[Transform] = ()):
        self._transforms = tuple(transforms)

    @classmethod
    def from_files(cls, paths: Iterable[str | Path]) -> "RuleTransformer":
        return cls([compile_rule_file(path) for path in paths])

    @classmethod
    def from_settings(cls) -> "RuleTransformer":
        return cls.from_files(settings.RULES_FILES)

    def __len__(self) -> int:
        return len(self._transforms)

    def transform(self, view: TransactionView) -> TransactionView:
        """Run every transform in order."""
        for step in self._transforms:
            view = step(view)
            if not isinstance(view, TransactionView):
                raise RuleEvaluationError(
                    f"rule transform {step!r} returned {type(view).__name__}, "
                    "expected TransactionView"
                )
        return view

    def apply(
        self, transaction: CanonicalTransaction, source_account: str | None = None
    ) -> RenderedTransaction:
        """Project ``transaction``, run the rules and rebuild its postings.

        Args:
            transaction: Stored canonical transaction.
            source_account: Ledger name for the funding account; defaults to
                the raw account id.

        Raises:
            RuleEvaluationError: If any rule fails; nothing partial is returned.
        """
        original = TransactionView.of(transaction, source_account)
        view = self.transform(original)

        postings = []
        for index, posting in enumerate(transaction.postings):
            if index == 0:
                account = view.source_account
            elif posting.account == original.destination_account:
                account = view.destination_account
            else:
                account = posting.account
            postings.append(RenderedPosting(account=account, units=posting.units))

        return RenderedTransaction(
            id=transaction.id,
            date=transaction.date,
            pending=view.pending,
            payee=view.payee,
            narration=view.narration,
            postings=tuple(postings),
            tags=view.tags,
            links=transaction.links,
            metadata=dict(transaction.metadata),
        )
