"""FastAPI endpoints for the balance sync engine.

This module defines the trigger routes of the engine: transaction change notifications, operator-initiated recomputation, on-demand sweeps, read access to cached account records, and a health check. It wires the routes to the event reactor, the recomputer and the sweeper.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from balance_sync.api.dependencies import get_reactor, get_recomputer, get_store, get_sweeper
from balance_sync.core.models import Account, ManualSyncRequest, ReactionResult, SyncResponse, TransactionChange
from balance_sync.core.settings import Settings, get_settings
from balance_sync.core.utils import get_logger, utcnow_iso
from balance_sync.services.ledger_store import LedgerStore, LedgerStoreError
from balance_sync.services.recompute import BalanceRecomputer
from balance_sync.workers.invocation import InvocationTimeoutError, run_with_timeout
from balance_sync.workers.reactor import EventReactor
from balance_sync.workers.sweeper import DueTransactionSweeper

router = APIRouter()
logger = get_logger("balance-sync.api")


def _sync_response(status_code: int, **fields: object) -> JSONResponse:
    body = SyncResponse(**fields).model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse(body, status_code=status_code)


@router.post(
    "/events/transactions",
    response_model=ReactionResult,
    response_model_exclude_none=True,
    summary="React to a transaction change notification",
    description=(
        "Receives a create, update or delete notification for a transaction and reconciles the balance of "
        "every account the change affects. Credit card transactions and transactions without an account are "
        "acknowledged without any work.\n\n"
        "**Response:**\n"
        "- 200 OK: The accounts that were reconciled (or scheduled, when coalescing is enabled).\n"
        "- 422 Unprocessable Entity: The notification is malformed, e.g. a non-numeric amount.\n"
        "- 500 Internal Server Error: The ledger store failed. When only some accounts failed, the body lists "
        "them in `failedAccountIds` and the other accounts are still reconciled.\n"
        "- 504 Gateway Timeout: The reconciliation did not finish in time; the next trigger heals it."
    ),
)
def transaction_event(
    change: TransactionChange, response: Response, reactor: EventReactor = Depends(get_reactor)
) -> ReactionResult:
    """Dispatch a transaction change notification to the event reactor."""
    try:
        result = reactor.handle(change)
        if result.failed_account_ids:
            response.status_code = 500
        elif result.timed_out_account_ids:
            response.status_code = 504
        return result
    except InvocationTimeoutError as exc:
        logger.warning(f"Timed out handling transaction {change.transaction_id}: {exc}")
        raise HTTPException(504, str(exc)) from exc
    except LedgerStoreError as exc:
        logger.exception(f"Error handling transaction {change.transaction_id}")
        raise HTTPException(500, "Ledger store error") from exc


@router.post(
    "/sync",
    response_model=SyncResponse,
    summary="Recompute balances on operator request",
    description=(
        "Emergency recovery path. With `accountId`, fully recomputes that account and returns its balance. With "
        "`userId`, reconciles the user's accounts holding due transactions, or every account of the user when "
        "`reprocessAll` is true. `accountId` takes precedence when both are given.\n\n"
        "**Response:**\n"
        "- 200 OK: `{ success, balance?, accountsProcessed?, message?, error? }`.\n"
        "- 400 Bad Request: Neither `userId` nor `accountId` was given.\n"
        "- 404 Not Found: The account does not exist.\n"
        "- 500 Internal Server Error: The ledger store failed.\n"
        "- 504 Gateway Timeout: Recomputing the account did not finish in time."
    ),
    responses={
        400: {
            "description": "Missing identifier.",
            "content": {
                "application/json": {"example": {"success": False, "error": "userId or accountId is required"}}
            },
        },
    },
)
def manual_sync(
    request: ManualSyncRequest,
    recomputer: BalanceRecomputer = Depends(get_recomputer),
    sweeper: DueTransactionSweeper = Depends(get_sweeper),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Run an operator-initiated recomputation."""
    if not request.account_id and not request.user_id:
        logger.warning("Rejected manual sync without userId or accountId")
        return _sync_response(400, success=False, error="userId or accountId is required")
    try:
        if request.account_id:
            logger.info(f"Manual recomputation of account {request.account_id}")
            result = run_with_timeout(
                lambda: recomputer.recompute(request.account_id), settings.invocation_timeout_seconds
            )
            if result is None:
                return _sync_response(404, success=False, error=f"Account {request.account_id} not found")
            return _sync_response(
                200, success=True, balance=result.balance, accounts_processed=1, message="Balance recomputed"
            )

        logger.info(f"Manual sync of user {request.user_id} (reprocess_all={request.reprocess_all})")
        if request.reprocess_all:
            report = sweeper.reprocess_user(request.user_id)
            message = "All accounts reprocessed"
        else:
            report = sweeper.process_user(request.user_id)
            message = "Due transactions processed"
        if report.accounts_failed:
            failed = ", ".join(sorted(report.failed_account_ids))
            return _sync_response(
                200,
                success=False,
                accounts_processed=report.accounts_processed,
                error=f"Failed to recompute accounts: {failed}",
            )
        return _sync_response(200, success=True, accounts_processed=report.accounts_processed, message=message)
    except InvocationTimeoutError as exc:
        logger.warning(f"Timed out in manual_sync: {exc}")
        return _sync_response(504, success=False, error=str(exc))
    except LedgerStoreError as exc:
        logger.exception("Error in manual_sync")
        return _sync_response(500, success=False, error=str(exc))


@router.post(
    "/sweep",
    status_code=202,
    summary="Start a due-transaction sweep",
    description=(
        "Starts a sweep over every account-owning user in the background, as the daily schedule does. With "
        "`reprocessAll=true`, recomputes every account instead, including accounts without due transactions; "
        "this heals balances left stale by lost notifications."
    ),
    response_description="Sweep accepted.",
)
def start_sweep(
    background_tasks: BackgroundTasks,
    reprocess_all: bool = Query(False, alias="reprocessAll"),
    sweeper: DueTransactionSweeper = Depends(get_sweeper),
) -> dict:
    """Start a sweep as a background task."""
    background_tasks.add_task(sweeper.reprocess_all if reprocess_all else sweeper.run)
    logger.info(f"Sweep requested via API (reprocess_all={reprocess_all})")
    return {"status": "accepted", "reprocess_all": reprocess_all, "requested_at": utcnow_iso()}


@router.get(
    "/accounts/{account_id}",
    response_model=Account,
    summary="Get a cached account record",
    description="Returns the account with its cached balance, the ids folded into it and when it was last recomputed.",
    responses={404: {"description": "Account not found."}},
)
def get_account(account_id: str, store: LedgerStore = Depends(get_store)) -> Account:
    """Return the cached account record."""
    account = store.get_account(account_id)
    if account is None:
        raise HTTPException(404, "Account not found")
    return account


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
