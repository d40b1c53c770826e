import logging

import azure.functions as func

from insight_utils.entity_api import handle


def main(req: func.HttpRequest) -> func.HttpResponse:
    logging.info('Team_API processed a request.')
    return handle(req, "team")
