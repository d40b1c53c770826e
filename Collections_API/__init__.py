import logging

import azure.functions as func

from insight_utils.db_utils import get_db
from insight_utils.errors import ConflictError, DashboardError
from insight_utils.http import respond, options_response, error_response, internal_error, get_json_body
from insight_utils.reconcile import EntityReconciler
from insight_utils.settings import collection_clear_allowed


def main(req: func.HttpRequest) -> func.HttpResponse:
    logging.info('Collections_API processed a request.')

    if req.method == "OPTIONS":
        return options_response()
    if req.method != "DELETE":
        return respond({"error": "Method not allowed"}, status=405)

    try:
        if not collection_clear_allowed():
            logging.warning("Refusing collection clear: APP_ENV=prod without ALLOW_COLLECTION_CLEAR=1")
            raise ConflictError("Collection clear is disabled in production")

        body = get_json_body(req)
        result = EntityReconciler(get_db()).clear_collections(body.get("collections"))
        status = 200 if result["success"] else 500
        return respond(result, status=status)

    except DashboardError as e:
        return error_response(e)
    except Exception as e:
        return internal_error(e, "Collections_API")
