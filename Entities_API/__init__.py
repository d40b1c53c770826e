import logging

import azure.functions as func

from insight_utils.db_utils import get_db
from insight_utils.errors import DashboardError
from insight_utils.http import respond, options_response, error_response, internal_error
from insight_utils.reconcile import EntityReconciler


def main(req: func.HttpRequest) -> func.HttpResponse:
    logging.info('Entities_API processed a request.')

    if req.method == "OPTIONS":
        return options_response()

    try:
        report = EntityReconciler(get_db()).validate_relationships()
        if not report["valid"]:
            logging.warning(f"Relationship check found {report['totalIssues']} issue type(s)")
        return respond(report)
    except DashboardError as e:
        return error_response(e)
    except Exception as e:
        return internal_error(e, "Entities_API")
