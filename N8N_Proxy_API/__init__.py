import concurrent.futures
import logging

import azure.functions as func

from insight_utils.errors import AggregationError, DashboardError
from insight_utils.fanout import split
from insight_utils.http import respond, options_response, error_response, internal_error, get_json_body
from insight_utils.merge import MergeAggregator
from insight_utils.settings import get_n8n_settings
from insight_utils.webhook_proxy import WebhookProxy, webhook_path

WORKFLOW_STARTED = {"message": "Workflow was started"}

EXPIRY_POLL_SECONDS = 0.25

# action -> (webhook name, success message). No message means the raw response is relayed.
RELAY_ROUTES = {
    "get-cases": ("get-performance", "Get Cases workflow triggered successfully"),
    "calculate-metrics": ("get-performance", "Calculate Metrics workflow triggered successfully"),
    "analyze-sct": ("analyze-sct", None),
    "analyze-survey": ("analyze-survey", None),
}


def get_proxy(settings=None):
    settings = settings or get_n8n_settings()
    return WebhookProxy(settings["base_url"], timeout=settings["timeout"])


def relay(action, body, settings):
    name, message = RELAY_ROUTES[action]
    data = get_proxy(settings).forward(webhook_path(name, settings["webhook_prefix"]), body)
    if data is None:
        data = dict(WORKFLOW_STARTED)
    if message is None:
        return data
    return {"success": True, "message": message, "data": data}


def generate_report(body, settings):
    """Fan a multi-owner request out to one workflow run per owner and merge the outputs.

    Each task is timed from the moment a worker picks it up, so owners queued
    behind a full pool are not charged for the wait.
    """
    tasks = split(body)
    task_timeout = settings["task_timeout"]
    # The per-request timeout also bounds any worker thread still running after we return
    proxy = WebhookProxy(settings["base_url"], timeout=task_timeout)
    aggregator = MergeAggregator(tasks, task_timeout=task_timeout)
    report_path = settings["report_path"]

    def run(task):
        aggregator.start(task["batchId"])
        return proxy.forward(report_path, task)

    executor = concurrent.futures.ThreadPoolExecutor(max_workers=max(1, min(settings["max_workers"], len(tasks))))
    futures = {executor.submit(run, task): task for task in tasks}
    waiting = set(futures)
    try:
        while waiting:
            done, waiting = concurrent.futures.wait(
                waiting, timeout=min(EXPIRY_POLL_SECONDS, task_timeout),
                return_when=concurrent.futures.FIRST_COMPLETED,
            )
            for fut in done:
                batch_id = futures[fut]["batchId"]
                try:
                    output = fut.result()
                except DashboardError as e:
                    logging.warning(f"Report task {batch_id} failed: {e.message}")
                    aggregator.fail(batch_id, e.message)
                    continue
                aggregator.add(output, batch_id=batch_id)

            expired = set(aggregator.expire())
            waiting = {fut for fut in waiting if futures[fut]["batchId"] not in expired}
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    merged = aggregator.result()
    logging.info(
        f"generate-report: {merged['tasksSucceeded']}/{len(tasks)} task(s) succeeded, "
        f"{merged['totalResults']} result(s)"
    )
    if not merged["success"]:
        raise AggregationError(
            "All report tasks failed",
            details={"totalBatches": len(tasks), "failedBatches": merged["failedBatches"]},
        )
    return merged


def main(req: func.HttpRequest) -> func.HttpResponse:
    logging.info('N8N_Proxy_API processed a request.')

    if req.method == "OPTIONS":
        return options_response()

    action = (req.route_params.get("action") or "").strip("/")

    try:
        settings = get_n8n_settings()

        if action == "health" and req.method == "GET":
            report = get_proxy(settings).health()
            return respond(report, status=200 if report["status"] == "healthy" else 503)

        if req.method != "POST":
            return respond({"error": "Method not allowed"}, status=405)

        if action in RELAY_ROUTES:
            body = get_json_body(req, required=False) or {}
            return respond(relay(action, body, settings))

        if action == "generate-report":
            return respond(generate_report(get_json_body(req), settings))

        return respond({"error": f"Unknown workflow action: {action}"}, status=404)

    except DashboardError as e:
        return error_response(e)
    except Exception as e:
        return internal_error(e, "N8N_Proxy_API")
