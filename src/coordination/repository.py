"""
Persistence for workflow executions and their resumption tokens.

Layout in the blob store::

    workflows/executions/{execution_id}.json   execution record (versioned)
    workflows/active/{execution_id}             marker while non-terminal
    workflows/tokens/{token}.json               token -> execution binding
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..booking_store.blob_store import BlobStore
from ..utils.logger import get_logger
from ..utils.models import WorkflowExecution, utc_now

EXECUTION_PREFIX = "workflows/executions/"
ACTIVE_PREFIX = "workflows/active/"
TOKEN_PREFIX = "workflows/tokens/"

_TOKEN_SHAPE = re.compile(r'^[A-Za-z0-9_-]{16,128}$')


@dataclass
class TokenRecord:
    """Binds one resumption token to an execution and cursor position."""
    token: str
    execution_id: str
    cleaner_cursor: int
    cleaner_name: str
    issued_at: datetime
    consumed_at: Optional[datetime] = None
    response: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'token': self.token,
            'execution_id': self.execution_id,
            'cleaner_cursor': self.cleaner_cursor,
            'cleaner_name': self.cleaner_name,
            'issued_at': self.issued_at.isoformat(),
            'consumed_at': self.consumed_at.isoformat() if self.consumed_at else None,
            'response': self.response,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenRecord':
        consumed = data.get('consumed_at')
        return cls(
            token=data['token'],
            execution_id=data['execution_id'],
            cleaner_cursor=data.get('cleaner_cursor', 0),
            cleaner_name=data.get('cleaner_name', ""),
            issued_at=datetime.fromisoformat(data['issued_at']),
            consumed_at=datetime.fromisoformat(consumed) if consumed else None,
            response=data.get('response'),
        )


class WorkflowRepository:
    """Stores executions with optimistic concurrency on their version."""

    def __init__(self, blob_store: BlobStore):
        self.logger = get_logger("workflow_repository")
        self.blob_store = blob_store

    @staticmethod
    def _execution_key(execution_id: str) -> str:
        return f"{EXECUTION_PREFIX}{execution_id}.json"

    @staticmethod
    def _active_key(execution_id: str) -> str:
        return f"{ACTIVE_PREFIX}{execution_id}"

    def create(self, execution: WorkflowExecution) -> WorkflowExecution:
        execution.version = self.blob_store.put_json(
            self._execution_key(execution.execution_id), execution.to_dict(), must_not_exist=True
        )
        self.blob_store.put(self._active_key(execution.execution_id), execution.execution_id)
        return execution

    def load(self, execution_id: str) -> Optional[WorkflowExecution]:
        stored = self.blob_store.get_json(self._execution_key(execution_id))
        if stored is None:
            return None
        payload, version = stored
        return WorkflowExecution.from_dict(payload, version=version)

    def save(self, execution: WorkflowExecution, now: Optional[datetime] = None) -> WorkflowExecution:
        """Write if nobody else has since the execution was loaded.

        Raises:
            ConcurrentModificationError: another writer got there first
        """
        execution.updated_at = now or utc_now()
        execution.version = self.blob_store.put_json(
            self._execution_key(execution.execution_id), execution.to_dict(),
            expected_version=execution.version
        )
        return execution

    def archive(self, execution: WorkflowExecution) -> None:
        self.blob_store.delete(self._active_key(execution.execution_id))
        self.logger.info("Execution archived", execution_id=execution.execution_id,
                         status=execution.status.value)

    def list_active(self) -> List[WorkflowExecution]:
        executions = []
        for key in self.blob_store.list_keys(ACTIVE_PREFIX):
            execution_id = key[len(ACTIVE_PREFIX):]
            execution = self.load(execution_id)
            if execution is None:
                self.logger.warning("Active marker without execution", execution_id=execution_id)
                self.blob_store.delete(key)
                continue
            executions.append(execution)
        return executions

    def issue_token(self, record: TokenRecord) -> None:
        self.blob_store.put_json(f"{TOKEN_PREFIX}{record.token}.json", record.to_dict(), must_not_exist=True)

    def get_token(self, token: str) -> Optional[TokenRecord]:
        if not token or not _TOKEN_SHAPE.match(token):
            return None
        stored = self.blob_store.get_json(f"{TOKEN_PREFIX}{token}.json")
        if stored is None:
            return None
        return TokenRecord.from_dict(stored[0])

    def mark_token_consumed(self, record: TokenRecord, response: str) -> None:
        record.consumed_at = utc_now()
        record.response = response
        self.blob_store.put_json(f"{TOKEN_PREFIX}{record.token}.json", record.to_dict())
