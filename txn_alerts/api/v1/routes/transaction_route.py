from fastapi import APIRouter, Depends, HTTPException, status

from txn_alerts.schemas.transaction_schema import (
    TransactionCreate,
    TransactionIngested,
    TransactionListResponse,
)
from txn_alerts.db.models.transaction_model import TransactionModel
from txn_alerts.services.pipeline import AlertPipeline, get_pipeline
from txn_alerts.services.transaction_service import ingest_transaction

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.post("", response_model=TransactionIngested, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: TransactionCreate,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    txn, entry = await ingest_transaction(pipeline.transactions, pipeline.queue, data)

    # event-driven path: don't wait for the next scheduled tick
    if pipeline.scheduler.is_running:
        pipeline.scheduler.trigger()

    return TransactionIngested(transaction=txn, queue_entry_id=entry.id, status=entry.status)


@router.get("", response_model=TransactionListResponse)
async def get_user_transactions(
    user_id: str,
    limit: int = 100,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    transactions = await pipeline.transactions.list_for_user(user_id, limit=limit)
    return {"transactions": transactions, "count": len(transactions)}


@router.get("/{transaction_id}", response_model=TransactionModel)
async def get_transaction(
    transaction_id: str,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    txn = await pipeline.transactions.get(transaction_id)
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn
