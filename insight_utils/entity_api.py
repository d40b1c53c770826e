import azure.functions as func

from .db_utils import get_db
from .errors import DashboardError, ValidationError
from .http import respond, options_response, error_response, internal_error, get_json_body
from .reconcile import EntityReconciler, PARENT_REF

LABELS = {"team": "Team", "squad": "Squad", "dpe": "DPE"}


def handle(req: func.HttpRequest, kind: str) -> func.HttpResponse:
    """Shared CRUD handler behind Team_API, Squad_API and DPE_API."""
    if req.method == "OPTIONS":
        return options_response()

    label = LABELS[kind]
    entity_id = (req.route_params.get("id") or "").strip() or None

    try:
        rec = EntityReconciler(get_db())

        if req.method == "GET":
            if entity_id:
                return respond(rec.get(kind, entity_id))
            parent_id = None
            if kind in PARENT_REF:
                fk = PARENT_REF[kind][0]
                # Accept the filter under any of the legacy spellings too
                parent_id = (
                    req.params.get(fk)
                    or req.params.get(fk.replace("Id", "ID"))
                    or req.params.get(fk.replace("Id", "_id"))
                )
            return respond(rec.list(kind, parent_id=parent_id))

        if req.method == "POST":
            if entity_id:
                raise ValidationError(f"POST does not accept an id; use PUT /{kind}/{{id}}")
            created = rec.create(kind, get_json_body(req))
            return respond({"message": f"{label} created successfully", "data": created}, status=201)

        if req.method == "PUT":
            if not entity_id:
                raise ValidationError(f"{label} id is required")
            updated = rec.update(kind, entity_id, get_json_body(req))
            return respond({"message": f"{label} updated successfully", "data": updated})

        if req.method == "DELETE":
            if not entity_id:
                raise ValidationError(f"{label} id is required")
            result = rec.delete(kind, entity_id)
            return respond({"message": f"{label} deleted successfully", **result})

        return respond({"error": "Method not allowed"}, status=405)

    except DashboardError as e:
        return error_response(e)
    except Exception as e:
        return internal_error(e, f"{label}_API")
