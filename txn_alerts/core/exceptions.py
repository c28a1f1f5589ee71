# txn_alerts/core/exceptions.py


class AlertPipelineError(Exception):
    """Base error for the transaction alert pipeline"""


class InvalidTransactionError(AlertPipelineError):
    """A queued transaction is malformed or does not belong to the queue entry's user"""


class TransactionNotFoundError(AlertPipelineError):
    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id
