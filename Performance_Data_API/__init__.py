import logging

import azure.functions as func

from insight_utils.db_utils import get_db
from insight_utils.errors import DashboardError
from insight_utils.http import respond, options_response, error_response, internal_error, get_json_body
from insight_utils.reconcile import EntityReconciler


def _param(req, *names):
    for name in names:
        val = req.params.get(name)
        if val:
            return val
    return None


def main(req: func.HttpRequest) -> func.HttpResponse:
    logging.info('Performance_Data_API processed a request.')

    if req.method == "OPTIONS":
        return options_response()

    try:
        rec = EntityReconciler(get_db())

        if req.method == "GET":
            records = rec.list_performance(
                entity_type=_param(req, "entityType", "entity_type"),
                entity_id=_param(req, "entityId", "entityID", "entity_id"),
                entity_name=_param(req, "entityName", "entity_name"),
                start_date=_param(req, "startDate", "start_date"),
                end_date=_param(req, "endDate", "end_date"),
            )
            return respond(records)

        if req.method == "POST":
            created = rec.create_performance(get_json_body(req))
            return respond({"message": "Performance data created successfully", "data": created}, status=201)

        return respond({"error": "Method not allowed"}, status=405)

    except DashboardError as e:
        return error_response(e)
    except Exception as e:
        return internal_error(e, "Performance_Data_API")
