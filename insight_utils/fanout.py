import logging
import time
import uuid

from .errors import ValidationError

logger = logging.getLogger(__name__)


def split(request, now_ms=None, request_id=None):
    """Split a multi-owner report request into one task per owner.

    ``request`` is ``{ownerNames, dateRange, entityType, entityName}``. Tasks
    come back in input order and are stamped with identical entity/date values
    so the merge step can take them from any one task. Repeated owner names are
    not collapsed.
    """
    if not isinstance(request, dict):
        raise ValidationError("Report request must be an object")

    owner_names = request.get("ownerNames")
    if not isinstance(owner_names, list) or not owner_names:
        raise ValidationError("ownerNames must be a non-empty array")
    blank = [i for i, n in enumerate(owner_names) if not isinstance(n, str) or not n.strip()]
    if blank:
        raise ValidationError("ownerNames entries must be non-empty strings", details={"indexes": blank})

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if request_id is None:
        request_id = uuid.uuid4().hex[:12]

    total = len(owner_names)
    tasks = []
    for index, owner in enumerate(owner_names):
        task = {
            "batchIndex": index,
            "totalBatches": total,
            "ownerNames": [owner],
            "dateRange": request.get("dateRange"),
            "entityType": request.get("entityType"),
            "entityName": request.get("entityName"),
            "ownerId": f"owner-{index}",
            "batchId": f"batch-{now_ms}-{request_id}-{index}",
            "requestId": request_id,
        }
        if request.get("eurekaDateRange") is not None:
            task["eurekaDateRange"] = request["eurekaDateRange"]
        tasks.append(task)

    logger.info(f"Split request {request_id} into {total} single-owner task(s)")
    return tasks
