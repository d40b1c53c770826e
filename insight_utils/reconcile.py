"""
Entity reconciliation layer.

Every read and write of teams, squads, DPEs and performance records goes
through here so callers only ever see one canonical shape:

    team         {id, name, description, createdAt, updatedAt}
    squad        {id, name, teamId, description, createdAt, updatedAt}
    dpe          {id, name, squadId, email, role, createdAt, updatedAt}
    performance  {id, entityId, entityType, entityName, date, metrics,
                  surveyDetails, createdAt}

Historic documents stored the same relationship under several names
(``teamID`` / ``teamId`` / ``team_id``) and as either ObjectId or string.
Aliases are resolved in the fixed order listed in ``FIELD_ALIASES``; the first
present, non-null value wins. Writes always store the canonical name as a
string and unset the legacy aliases.

Delete policy is block-if-children-exist: a team with squads, or a squad
with DPEs, cannot be deleted (ConflictError).
"""
import logging
import re
from datetime import datetime, timezone

from bson import ObjectId

from .db_utils import COLL_TEAMS, COLL_SQUADS, COLL_DPES, COLL_PERFORMANCE
from .errors import ValidationError, ConflictError, NotFoundError, DataIntegrityError

logger = logging.getLogger(__name__)

ENTITY_KINDS = ("team", "squad", "dpe")

COLLECTIONS = {
    "team": COLL_TEAMS,
    "squad": COLL_SQUADS,
    "dpe": COLL_DPES,
    "performance": COLL_PERFORMANCE,
}

CLEARABLE_COLLECTIONS = [COLL_DPES, COLL_PERFORMANCE, COLL_SQUADS, COLL_TEAMS]

# Canonical name -> aliases in precedence order
FIELD_ALIASES = {
    "teamId": ("teamID", "teamId", "team_id"),
    "squadId": ("squadID", "squadId", "squad_id"),
    "entityId": ("entityID", "entityId", "entity_id"),
    "entityType": ("entityType", "entity_type"),
    "entityName": ("entityName", "entity_name"),
    "createdAt": ("createdAt", "created_at"),
    "updatedAt": ("updatedAt", "updated_at"),
    "surveyDetails": ("surveyDetails", "survey_details"),
}

# kind -> (canonical FK field, parent kind)
PARENT_REF = {
    "squad": ("teamId", "team"),
    "dpe": ("squadId", "squad"),
}

# kind -> (child kind, child FK field)
CHILD_REF = {
    "team": ("squad", "teamId"),
    "squad": ("dpe", "squadId"),
}

UPDATABLE_FIELDS = {
    "team": ("name", "description"),
    "squad": ("name", "description", "teamId"),
    "dpe": ("name", "email", "role", "squadId"),
}

READ_ONLY_FIELDS = {"id", "_id", "createdAt", "updatedAt"}

SURVEY_CATEGORIES = ("csat", "neut", "dsat")

# Reverse map alias -> canonical, used to canonicalize inbound payload keys
_ALIAS_TO_CANONICAL = {
    alias: canonical
    for canonical, aliases in FIELD_ALIASES.items()
    for alias in aliases
}


def _now():
    return datetime.now(timezone.utc)


def resolve_alias(record, canonical):
    """First present, non-null value among the aliases of ``canonical``."""
    for alias in FIELD_ALIASES.get(canonical, (canonical,)):
        val = record.get(alias)
        if val is not None:
            return val
    return None


def _id_str(val):
    if val is None:
        return None
    return str(val)


def id_candidates(val):
    """All stored forms an identifier may take (string and, if valid, ObjectId)."""
    sval = str(val)
    cands = [sval]
    if ObjectId.is_valid(sval):
        cands.append(ObjectId(sval))
    return cands


def _id_query(entity_id):
    return {"_id": {"$in": id_candidates(entity_id)}}


def alias_query(canonical, value):
    """Match ``value`` stored under any alias of ``canonical``, as str or ObjectId."""
    cands = id_candidates(value)
    return {"$or": [{alias: {"$in": cands}} for alias in FIELD_ALIASES[canonical]]}


def canonicalize_payload(payload):
    """Rename aliased keys of an inbound payload to canonical names.

    When a payload carries more than one alias of the same field the alias
    precedence decides, exactly as it does for stored records.
    """
    out = {k: v for k, v in payload.items() if k not in _ALIAS_TO_CANONICAL}
    for canonical, aliases in FIELD_ALIASES.items():
        if any(alias in payload for alias in aliases):
            out[canonical] = resolve_alias(payload, canonical)
    return out


def _legacy_unset(canonical):
    return {alias: "" for alias in FIELD_ALIASES[canonical] if alias != canonical}


def normalize(record, kind):
    """Canonical view of a stored record.

    Raises DataIntegrityError when a kind that requires a parent reference has
    none of the known aliases set.
    """
    if record is None:
        return None
    if kind == "performance":
        return _normalize_performance(record)
    if kind not in ENTITY_KINDS:
        raise ValidationError(f"Unknown entity kind: {kind}")

    out = {
        "id": _id_str(record.get("_id", record.get("id"))),
        "name": record.get("name"),
    }

    if kind in PARENT_REF:
        fk, _parent = PARENT_REF[kind]
        val = resolve_alias(record, fk)
        if val is None:
            raise DataIntegrityError(
                f"{kind} {out['id']} has no {fk}",
                details={"kind": kind, "id": out["id"], "checkedAliases": list(FIELD_ALIASES[fk])},
            )
        out[fk] = _id_str(val)

    if kind == "dpe":
        out["email"] = record.get("email")
        out["role"] = record.get("role")
    else:
        out["description"] = record.get("description")

    out["createdAt"] = resolve_alias(record, "createdAt")
    out["updatedAt"] = resolve_alias(record, "updatedAt") or out["createdAt"]
    return out


def _normalize_performance(record):
    entity_id = resolve_alias(record, "entityId")
    entity_name = resolve_alias(record, "entityName")
    rid = _id_str(record.get("_id", record.get("id")))
    if entity_id is None and entity_name is None:
        raise DataIntegrityError(
            f"performance record {rid} has neither entityId nor entityName",
            details={
                "kind": "performance",
                "id": rid,
                "checkedAliases": list(FIELD_ALIASES["entityId"] + FIELD_ALIASES["entityName"]),
            },
        )

    metrics = dict(record.get("metrics") or {})
    survey = resolve_alias(record, "surveyDetails")
    # Legacy records nested surveyDetails inside metrics; hoist to top level.
    nested = metrics.pop("surveyDetails", None)
    if survey is None:
        survey = nested

    out = {
        "id": rid,
        "entityId": _id_str(entity_id),
        "entityType": resolve_alias(record, "entityType"),
        "date": record.get("date"),
        "metrics": metrics,
        "surveyDetails": survey or [],
        "createdAt": resolve_alias(record, "createdAt"),
    }
    if entity_name is not None:
        out["entityName"] = entity_name
    for extra in ("cases_count", "sample_cases"):
        if record.get(extra):
            out[extra] = record[extra]
    return out


def _clean_name(name, kind):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Missing required field: name", details={"kind": kind})
    return name.strip()


class EntityReconciler:
    """Store access for the four entity kinds, with reconciliation applied."""

    def __init__(self, db):
        self.db = db

    def _coll(self, kind):
        if kind not in COLLECTIONS:
            raise ValidationError(f"Unknown entity kind: {kind}")
        return self.db[COLLECTIONS[kind]]

    def _find_raw(self, kind, entity_id):
        if entity_id is None or str(entity_id).strip() == "":
            return None
        return self._coll(kind).find_one(_id_query(entity_id))

    # --- references -------------------------------------------------------

    def validate_reference(self, kind, foreign_id) -> bool:
        if kind not in ENTITY_KINDS:
            return False
        return self._find_raw(kind, foreign_id) is not None

    def _require_parent(self, kind, parent_id):
        fk, parent_kind = PARENT_REF[kind]
        if parent_id is None or str(parent_id).strip() == "":
            raise ValidationError(f"Missing required field: {fk}", details={"kind": kind})
        if not self.validate_reference(parent_kind, parent_id):
            raise ValidationError(
                f"{parent_kind} {parent_id} does not exist",
                details={"field": fk, "value": str(parent_id)},
            )
        return str(parent_id)

    def _check_duplicate_name(self, kind, name, exclude_id=None):
        query = {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}
        existing = self._coll(kind).find_one(query)
        if existing is None:
            return
        if exclude_id is not None and str(existing["_id"]) == str(exclude_id):
            return
        raise ConflictError(
            f"{kind} name already exists",
            details={"existing": {"id": str(existing["_id"]), "name": existing.get("name")}},
        )

    # --- reads ------------------------------------------------------------

    def get(self, kind, entity_id):
        raw = self._find_raw(kind, entity_id)
        if raw is None:
            raise NotFoundError(f"{kind} {entity_id} not found")
        return normalize(raw, kind)

    def list(self, kind, parent_id=None):
        query = {}
        if parent_id is not None and kind in PARENT_REF:
            query = alias_query(PARENT_REF[kind][0], parent_id)
        return [normalize(doc, kind) for doc in self._coll(kind).find(query).sort("name", 1)]

    # --- writes -----------------------------------------------------------

    def create(self, kind, payload):
        if kind not in ENTITY_KINDS:
            raise ValidationError(f"Unknown entity kind: {kind}")
        data = canonicalize_payload(payload or {})
        name = _clean_name(data.get("name"), kind)
        self._check_duplicate_name(kind, name)

        now = _now()
        doc = {"name": name, "createdAt": now, "updatedAt": now}
        if kind in PARENT_REF:
            fk, _parent = PARENT_REF[kind]
            doc[fk] = self._require_parent(kind, data.get(fk))
        for field in UPDATABLE_FIELDS[kind]:
            if field not in doc and data.get(field) is not None:
                doc[field] = data[field]

        res = self._coll(kind).insert_one(doc)
        logger.info(f"Created {kind} {res.inserted_id} ({name})")
        doc["_id"] = res.inserted_id
        return normalize(doc, kind)

    def update(self, kind, entity_id, patch):
        if kind not in ENTITY_KINDS:
            raise ValidationError(f"Unknown entity kind: {kind}")
        data = canonicalize_payload(patch or {})
        for key in READ_ONLY_FIELDS:
            data.pop(key, None)

        unknown = sorted(k for k in data if k not in UPDATABLE_FIELDS[kind])
        if unknown:
            raise ValidationError(
                f"Unknown field(s) for {kind}: {', '.join(unknown)}",
                details={"allowed": list(UPDATABLE_FIELDS[kind])},
            )
        if not data:
            raise ValidationError(f"No updatable fields supplied for {kind}")

        raw = self._find_raw(kind, entity_id)
        if raw is None:
            raise NotFoundError(f"{kind} {entity_id} not found")

        to_set = {}
        to_unset = {}
        if "name" in data:
            to_set["name"] = _clean_name(data["name"], kind)
            self._check_duplicate_name(kind, to_set["name"], exclude_id=raw["_id"])

        if kind in PARENT_REF:
            fk, _parent = PARENT_REF[kind]
            if fk in data:
                to_set[fk] = self._require_parent(kind, data[fk])
                to_unset.update(_legacy_unset(fk))

        for field in UPDATABLE_FIELDS[kind]:
            if field in data and field not in to_set and field != "name":
                to_set[field] = data[field]

        to_set["updatedAt"] = _now()
        to_unset.update(_legacy_unset("updatedAt"))
        if resolve_alias(raw, "createdAt") is not None and "createdAt" not in raw:
            # Carry a legacy created_at forward so unsetting aliases never loses it
            to_set["createdAt"] = resolve_alias(raw, "createdAt")
            to_unset.update(_legacy_unset("createdAt"))

        update = {"$set": to_set}
        if to_unset:
            update["$unset"] = to_unset
        self._coll(kind).update_one({"_id": raw["_id"]}, update)
        logger.info(f"Updated {kind} {raw['_id']}: fields={sorted(to_set)}")
        return self.get(kind, raw["_id"])

    def delete(self, kind, entity_id):
        if kind not in ENTITY_KINDS:
            raise ValidationError(f"Unknown entity kind: {kind}")
        raw = self._find_raw(kind, entity_id)
        if raw is None:
            raise NotFoundError(f"{kind} {entity_id} not found")

        if kind in CHILD_REF:
            child_kind, child_fk = CHILD_REF[kind]
            count = self._coll(child_kind).count_documents(alias_query(child_fk, raw["_id"]))
            if count:
                raise ConflictError(
                    f"Cannot delete {kind} that has {child_kind}s assigned to it",
                    details={"childKind": child_kind, "childCount": count},
                )

        self._coll(kind).delete_one({"_id": raw["_id"]})
        logger.info(f"Deleted {kind} {raw['_id']}")
        return {"id": str(raw["_id"]), "deleted": True}

    # --- performance data -------------------------------------------------

    def _resolve_entity_by_name(self, entity_type, name):
        query = {"name": {"$regex": f"^{re.escape(name.strip())}$", "$options": "i"}}
        return self._coll(entity_type).find_one(query)

    def create_performance(self, payload):
        data = canonicalize_payload(payload or {})
        entity_type = data.get("entityType")
        if entity_type not in ENTITY_KINDS:
            raise ValidationError("entityType must be team, squad, or dpe")

        entity_id = data.get("entityId")
        entity_name = data.get("entityName")
        if entity_id is None and not entity_name:
            raise ValidationError("Missing required field: entityId or entityName")

        if entity_id is not None:
            if not self.validate_reference(entity_type, entity_id):
                raise ValidationError(
                    f"{entity_type} {entity_id} does not exist",
                    details={"field": "entityId", "value": str(entity_id)},
                )
            entity_id = str(entity_id)
        else:
            found = self._resolve_entity_by_name(entity_type, entity_name)
            if found is None:
                raise ValidationError(
                    f"{entity_type} named {entity_name!r} does not exist",
                    details={"field": "entityName", "value": entity_name},
                )
            entity_id = str(found["_id"])

        date = data.get("date")
        if not date:
            raise ValidationError("Missing required field: date")

        metrics = data.get("metrics")
        if not isinstance(metrics, dict):
            raise ValidationError("metrics must be an object")
        metrics = dict(metrics)
        # surveyDetails belongs at the top level of the record, never in metrics
        nested_survey = metrics.pop("surveyDetails", None)
        survey = data.get("surveyDetails")
        if survey is None:
            survey = nested_survey
        survey = validate_survey_details(survey or [])

        doc = {
            "entityId": entity_id,
            "entityType": entity_type,
            "date": date,
            "metrics": metrics,
            "surveyDetails": survey,
            "createdAt": _now(),
        }
        if entity_name:
            doc["entityName"] = entity_name

        res = self._coll("performance").insert_one(doc)
        logger.info(f"Created performance record {res.inserted_id} for {entity_type} {entity_id}")
        doc["_id"] = res.inserted_id
        return normalize(doc, "performance")

    def list_performance(self, entity_type=None, entity_id=None, entity_name=None,
                         start_date=None, end_date=None):
        clauses = []
        if entity_name:
            clauses.append({"$or": [{a: entity_name} for a in FIELD_ALIASES["entityName"]]})
        elif entity_type and entity_id:
            clauses.append({"$or": [{a: entity_type} for a in FIELD_ALIASES["entityType"]]})
            clauses.append(alias_query("entityId", entity_id))
        elif entity_type:
            clauses.append({"$or": [{a: entity_type} for a in FIELD_ALIASES["entityType"]]})
        elif entity_id:
            clauses.append(alias_query("entityId", entity_id))

        if start_date or end_date:
            date_q = {}
            if start_date:
                date_q["$gte"] = start_date
            if end_date:
                date_q["$lte"] = end_date
            clauses.append({"date": date_q})

        query = {"$and": clauses} if clauses else {}
        cursor = self._coll("performance").find(query).sort("date", -1)
        return [normalize(doc, "performance") for doc in cursor]

    # --- maintenance ------------------------------------------------------

    def clear_collections(self, names):
        if not isinstance(names, list) or not names:
            raise ValidationError("collections must be a non-empty array")
        invalid = [n for n in names if n not in CLEARABLE_COLLECTIONS]
        if invalid:
            raise ValidationError(
                f"Invalid collections: {', '.join(map(str, invalid))}",
                details={"allowed": CLEARABLE_COLLECTIONS},
            )

        results = {}
        for name in names:
            try:
                res = self.db[name].delete_many({})
                results[name] = {"success": True, "deletedCount": res.deleted_count}
            except Exception as e:
                logger.error(f"Failed clearing {name}: {e}", exc_info=True)
                results[name] = {"success": False, "error": str(e)}

        total = sum(r.get("deletedCount", 0) for r in results.values())
        logger.info(f"Cleared {len(names)} collection(s), deleted {total} documents total")
        return {
            "success": all(r["success"] for r in results.values()),
            "totalDeleted": total,
            "collections": results,
        }

    def validate_relationships(self):
        teams = list(self._coll("team").find({}))
        squads = list(self._coll("squad").find({}))
        dpes = list(self._coll("dpe").find({}))

        team_ids = {str(t["_id"]) for t in teams}
        squad_ids = {str(s["_id"]) for s in squads}

        issues = []
        warnings = []
        integrity = []

        def _check(records, kind, parent_ids):
            orphans = []
            linked = set()
            for rec in records:
                try:
                    canon = normalize(rec, kind)
                except DataIntegrityError as e:
                    integrity.append(e.details)
                    continue
                fk = PARENT_REF[kind][0]
                if canon[fk] in parent_ids:
                    linked.add(canon[fk])
                else:
                    orphans.append(canon["name"])
            return orphans, linked

        orphan_squads, teams_with_squads = _check(squads, "squad", team_ids)
        orphan_dpes, squads_with_dpes = _check(dpes, "dpe", squad_ids)

        if orphan_squads:
            issues.append({
                "type": "orphaned_squads",
                "count": len(orphan_squads),
                "entities": orphan_squads,
                "message": f"{len(orphan_squads)} squad(s) are not mapped to any existing team",
            })
        if orphan_dpes:
            issues.append({
                "type": "orphaned_dpes",
                "count": len(orphan_dpes),
                "entities": orphan_dpes,
                "message": f"{len(orphan_dpes)} DPE(s) are not mapped to any existing squad",
            })
        if integrity:
            issues.append({
                "type": "missing_reference",
                "count": len(integrity),
                "entities": integrity,
                "message": f"{len(integrity)} record(s) have no recognizable parent reference",
            })

        empty_teams = [t.get("name") for t in teams if str(t["_id"]) not in teams_with_squads]
        empty_squads = [s.get("name") for s in squads if str(s["_id"]) not in squads_with_dpes]
        if empty_teams:
            warnings.append({
                "type": "empty_teams",
                "count": len(empty_teams),
                "entities": empty_teams,
                "message": f"{len(empty_teams)} team(s) have no squads assigned",
            })
        if empty_squads:
            warnings.append({
                "type": "empty_squads",
                "count": len(empty_squads),
                "entities": empty_squads,
                "message": f"{len(empty_squads)} squad(s) have no DPEs assigned",
            })

        return {
            "valid": not issues,
            "summary": {
                "totalTeams": len(teams),
                "totalSquads": len(squads),
                "totalDPEs": len(dpes),
                "orphanedSquads": len(orphan_squads),
                "orphanedDPEs": len(orphan_dpes),
                "missingReferences": len(integrity),
                "emptyTeams": len(empty_teams),
                "emptySquads": len(empty_squads),
            },
            "issues": issues,
            "warnings": warnings,
            "totalIssues": len(issues),
            "totalWarnings": len(warnings),
            "lastValidated": _now(),
        }


def validate_survey_details(entries):
    if not isinstance(entries, list):
        raise ValidationError("surveyDetails must be an array")
    out = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValidationError(f"surveyDetails[{i}] must be an object")
        if not entry.get("caseId"):
            raise ValidationError(f"surveyDetails[{i}]: caseId is required")
        category = str(entry.get("category", "")).lower()
        if category not in SURVEY_CATEGORIES:
            raise ValidationError(
                f"surveyDetails[{i}]: category must be one of {', '.join(SURVEY_CATEGORIES)}",
                details={"value": entry.get("category")},
            )
        out.append({**entry, "category": category})
    return out
