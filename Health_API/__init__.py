import logging
from datetime import datetime, timezone

import azure.functions as func

from insight_utils.db_utils import get_db, ping
from insight_utils.http import respond, options_response


def main(req: func.HttpRequest) -> func.HttpResponse:
    logging.info('Health_API processed a request.')

    if req.method == "OPTIONS":
        return options_response()

    status = {"status": "ok", "timestamp": datetime.now(timezone.utc), "database": "connected"}
    try:
        ping(get_db())
    except Exception as e:
        logging.error(f"Health check: database ping failed: {e}", exc_info=True)
        status.update(status="degraded", database="unavailable", error=str(e))
        return respond(status, status=503)
    return respond(status)
