"""
Sync session adapter.

Decodes a sync request into the engine's input and encodes the engine's
result back into the wire format.
"""

from ..storage.clock import format_timestamp
from ..sync.changes import ChangeAction, InboundChange, TaskData
from ..sync.engine import SyncResult
from .schemas import SyncChangeRequest, SyncRequest


def decode_change(change: SyncChangeRequest) -> InboundChange:
    data = None
    if change.data is not None:
        data = TaskData(
            title=change.data.title,
            description=change.data.description,
            completed=change.data.completed,
            updated_at=change.data.updatedAt,
        )

    return InboundChange(
        action=ChangeAction(change.action),
        local_id=change.localId,
        server_id=change.serverId,
        data=data,
    )


def decode_sync_request(request: SyncRequest) -> tuple[str, list[InboundChange]]:
    """
    Convert a sync request body into engine input.

    Returns:
        (lastSyncTimestamp, inbound changes in request order)
    """
    return request.lastSyncTimestamp, [decode_change(c) for c in request.changes]


def encode_sync_result(result: SyncResult) -> dict:
    """
    Convert an engine result into the sync response body.

    localId is only present on creates that carried one; deletes carry
    no data.
    """
    return {
        "syncTimestamp": format_timestamp(result.sync_timestamp),
        "serverChanges": [change.to_dict() for change in result.server_changes],
    }
