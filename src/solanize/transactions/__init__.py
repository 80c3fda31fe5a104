from solanize.transactions.orchestrator import (
    PendingTransaction,
    TransactionOrchestrator,
    decode_transaction,
    encode_transaction,
)

__all__ = [
    "PendingTransaction",
    "TransactionOrchestrator",
    "decode_transaction",
    "encode_transaction",
]
