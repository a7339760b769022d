"""
Waiting on long running server operations such as project creation.
"""

import logging

from ..cli.errors import AzdoError, TransientError
from ..helpers.poll import poll

logger = logging.getLogger(__name__)

OPERATION_INTERVAL = 1.0
DONE_STATES = ("succeeded", "failed", "cancelled")


class OperationFailedError(AzdoError):
    def __init__(self, operation):
        status = getattr(operation, "status", "")
        message = getattr(operation, "result_message", "") or ""
        super().__init__(
            f"operation {getattr(operation, 'id', '')} did not succeed: status={status}, message={message}")
        self.operation = operation


def poll_operation(operations_client, operation_id, timeout=0.0, context=None, sleep=None):
    """
    Poll an operation every second until it reaches a final state.

    Args:
        operations_client: SDK operations client
        operation_id: Id returned by the queueing call
        timeout: Seconds to wait, 0 for no limit
        context: RunContext used for cancellation

    Returns:
        The final Operation model

    Raises:
        OperationFailedError: The operation failed or was cancelled
    """
    def check():
        operation = operations_client.get_operation(operation_id)
        status = (getattr(operation, "status", "") or "").lower()
        logger.debug("Operation %s status: %s", operation_id, status)
        if status not in DONE_STATES:
            raise TransientError(f"operation {operation_id} is {status or 'pending'}")
        return operation

    tries = 0 if timeout else 600
    operation = poll(check, tries=tries, delay=OPERATION_INTERVAL, timeout=timeout,
                     context=context, sleep=sleep)
    if (operation.status or "").lower() != "succeeded":
        raise OperationFailedError(operation)
    return operation
