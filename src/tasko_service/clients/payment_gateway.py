"""Payment gateway collaborator for escrow deposits."""

from __future__ import annotations

import time

from tasko_service.logging import get_logger


class PaymentGateway:
    """
    Records escrow deposits and hands back a transaction reference.

    No money moves: the reference is ``<prefix><epoch-millis>``. A real
    provider integration would replace this class behind the same
    ``deposit`` signature.
    """

    def __init__(self, transaction_prefix: str) -> None:
        self._transaction_prefix = transaction_prefix
        self._logger = get_logger(__name__)

    async def deposit(self, task_id: str, client_id: str, amount: float) -> str:
        """
        Take an escrow deposit for a task.

        Returns:
            Transaction reference string
        """
        transaction_ref = f"{self._transaction_prefix}{int(time.time() * 1000)}"
        self._logger.info(
            "Escrow deposit recorded",
            extra={
                "task_id": task_id,
                "client_id": client_id,
                "amount": amount,
                "transaction_ref": transaction_ref,
            },
        )
        return transaction_ref

    async def close(self) -> None:
        """Release gateway resources (none held by the mock)."""
