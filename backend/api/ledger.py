"""Ledger API endpoints."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse

from api.helpers import get_store
from services.errors import RuleError, RuleEvaluationError
from services.ledger_service import LedgerService
from services.ledger_store import LedgerStore
from services.rule_service import RuleTransformer

router = APIRouter(prefix="/api/ledger", tags=["ledger"])


def get_rule_transformer() -> RuleTransformer:
    """Compile the configured rule files (overridable in tests)."""
    try:
        return RuleTransformer.from_settings()
    except RuleError as e:
        raise HTTPException(status_code=500, detail=f"Rule error: {e}")


def get_ledger_service(
    store: LedgerStore = Depends(get_store),
    transformer: RuleTransformer = Depends(get_rule_transformer),
) -> LedgerService:
    return LedgerService(store, transformer)


@router.get("", response_class=PlainTextResponse)
def get_ledger(
    begin: date | None = Query(None, description="First date (inclusive)"),
    until: date | None = Query(None, description="Last date (inclusive)"),
    service: LedgerService = Depends(get_ledger_service),
):
    """Render transactions dated within [begin, until] as Ledger text."""
    if begin and until and begin > until:
        raise HTTPException(status_code=400, detail="begin must not be after until")
    try:
        return service.render(begin, until)
    except RuleEvaluationError as e:
        raise HTTPException(status_code=500, detail=f"Rule evaluation failed: {e}")
