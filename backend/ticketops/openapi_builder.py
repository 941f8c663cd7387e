"""Deterministic OpenAPI spec builder.

Scope:
- Auth endpoints: /iam/auth/login (POST), /iam/auth/me (GET)
- Public client signup: /clients/registrations (POST)
- For each tracked entity: list + single GET & HEAD with caching headers
- Ticket transitions, RMA steps and stock requisition / transfer steps as POST
  action endpoints, derived from the runtime transition tables so the document
  cannot drift from behavior
- Stock views, work logs and asset update links

`ticketops/openapi.py` re-exports from here.
"""
from typing import Any, Dict, List, Tuple
from .openapi_parts.constants import (
    ENTITIES,
    TICKET_ACTION_PERMISSIONS,
    RMA_SITE_STEP_PERMISSION,
    RMA_HO_STEP_PERMISSION,
    SORT_DETAILS,
)
from .openapi_parts.helpers import schema_minimal
from .openapi_parts.domains._common import build_service_paths
from .models.ticket import Ticket
from .models.rma import RmaRequest
from .models.asset import Asset
from .services.ticket_workflow import TICKET_FSM
from .services.rma_workflow import RMA_FSM, SITE_STEPS
from .services.stock import REQUISITION_FSM, REQUISITION_PERMISSIONS, TRANSFER_FSM, TRANSFER_PERMISSIONS

__all__ = ["build_openapi_spec"]


def _humanize(action: str) -> str:
    return action.replace("_", " ").capitalize()


def _ticket_actions() -> List[Tuple[str, str, str]]:
    return [
        (action.replace("_", "-"), f"{_humanize(action)} ticket", TICKET_ACTION_PERMISSIONS[action])
        for action in TICKET_FSM.rules
    ]


def _rma_actions() -> List[Tuple[str, str, str]]:
    out = []
    for step in RMA_FSM.rules:
        perm = RMA_SITE_STEP_PERMISSION if step in SITE_STEPS else RMA_HO_STEP_PERMISSION
        out.append((step.replace("_", "-"), f"{_humanize(step)} (RMA step)", perm))
    return out


def _stock_actions(fsm, permissions, noun: str) -> List[Tuple[str, str, str]]:
    return [(step, f"{_humanize(step)} {noun}", permissions[step]) for step in fsm.rules]


def _op(summary: str, permissions: List[str], ok: str = "200", **extra) -> Dict[str, Any]:
    od = {
        "summary": summary,
        "responses": {ok: {"description": "OK"}, "400": {"$ref": "#/components/responses/BadRequest"},
                      "403": {"$ref": "#/components/responses/Forbidden"}},
        "x-required-permissions": permissions,
    }
    od.update(extra)
    return od


def _extra_paths() -> Dict[str, Any]:
    """Non-CRUD endpoints: stock views, work logs and asset update requests."""
    return {
        "/stock/inventory": {"get": _op("Spare stock grouped by site and asset type", ["STK.READ"])},
        "/stock/availability/{ticket_id}": {"get": _op("Spares available for a ticket's asset", ["STK.READ"])},
        "/stock/movements": {"get": _op("Stock movement log with per-type counts", ["STK.READ"])},
        "/worklogs/my": {"get": _op("Own daily work logs", ["WLOG.SELF"])},
        "/worklogs/my/today": {"get": _op("Own work log for today", ["WLOG.SELF"])},
        "/worklogs/manual": {"post": _op("Add a manual work-log entry", ["WLOG.SELF"], ok="201")},
        "/worklogs/manual/{entry_id}": {"delete": _op("Delete a manual work-log entry", ["WLOG.SELF"], ok="204")},
        "/worklogs/summary": {"put": _op("Set the daily summary", ["WLOG.SELF"])},
        "/worklogs/user/{user_id}": {"get": _op("A team member's work logs", ["WLOG.TEAM.READ"])},
        "/worklogs/team": {"get": _op("Team work logs for one day", ["WLOG.TEAM.READ"])},
        "/asset-update-requests": {"post": _op("Open an asset update link for an RMA install", ["RMA.RECEIVE"],
                                               ok="201")},
        "/asset-update-requests/access/{token}": {
            "get": _op("Link holder view", [], security=[]),
            "put": _op("Submit device details through the link", [], security=[]),
        },
        "/asset-update-requests/ticket/{ticket_id}": {"get": _op("Pending asset update for a ticket", ["RMA.READ"])},
        "/asset-update-requests/{request_id}": {"get": _op("Get asset update request", ["RMA.READ"])},
        "/asset-update-requests/{request_id}/approve": {
            "post": _op("Approve details and complete the RMA install", ["AST.UPDATE.APPROVE"])},
        "/asset-update-requests/{request_id}/reject": {
            "post": _op("Reject submitted details", ["AST.UPDATE.APPROVE"])},
    }


def build_openapi_spec() -> Dict[str, Any]:
    schemas = {e[0]: schema_minimal(e[0]) for e in ENTITIES}
    schemas["Ticket"]["x-transitions"] = list(Ticket.ALL_STATUSES)
    schemas["Ticket"]["x-transition-graph"] = TICKET_FSM.as_graph()
    # send-item and select-destination pick their target from the payload
    schemas["RmaRequest"]["x-transitions"] = list(RmaRequest.ALL_STATUSES)
    schemas["RmaRequest"]["x-transition-graph"] = RMA_FSM.as_graph()
    schemas["Asset"]["x-statuses"] = list(Asset.ALL_STATUSES)
    schemas["Requisition"]["x-transition-graph"] = REQUISITION_FSM.as_graph()
    schemas["StockTransfer"]["x-transition-graph"] = TRANSFER_FSM.as_graph()

    components: Dict[str, Any] = {
        "schemas": schemas
        | {
            "Pagination": {
                "type": "object",
                "properties": {
                    "total": {"type": "integer"},
                    "limit": {"type": "integer"},
                    "offset": {"type": "integer"},
                    "returned": {"type": "integer"},
                },
                "required": ["total", "limit", "offset", "returned"],
            },
            "Error": {
                "type": "object",
                "properties": {
                    "error": {
                        "type": "object",
                        "properties": {
                            "status": {"type": "integer"},
                            "title": {"type": "string"},
                            "detail": {"type": "string"},
                        },
                    }
                },
                "required": ["error"],
            },
        },
        "responses": {
            "NotFound": {"description": "Not Found"},
            "BadRequest": {"description": "Bad Request"},
            "Forbidden": {"description": "Forbidden"},
            "Conflict": {"description": "Conflict (illegal or stale transition)"},
        },
        "securitySchemes": {"BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}},
        "parameters": {},
    }

    params = components["parameters"]
    params.update({
        "LimitParam": {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 50}},
        "OffsetParam": {"name": "offset", "in": "query", "schema": {"type": "integer", "default": 0}},
    })
    for pname, desc in SORT_DETAILS.items():
        params[pname] = {"name": "sort", "in": "query", "schema": {"type": "string"}, "description": desc}

    paths: Dict[str, Any] = {
        "/iam/auth/login": {"post": {"summary": "Login", "security": [],
                                     "responses": {"200": {"description": "JWT issued"}}}},
        "/iam/auth/me": {"get": {"summary": "Current user", "responses": {"200": {"description": "OK"}}}},
        "/clients/registrations": {"post": {"summary": "Client self-registration", "security": [],
                                            "responses": {"201": {"description": "Registration pending review"},
                                                          "409": {"$ref": "#/components/responses/Conflict"}}}},
        "/reports/dashboard": {"get": {"summary": "Dashboard counters",
                                       "responses": {"200": {"description": "OK"}},
                                       "x-required-permissions": ["RPT.READ"]}},
    }

    actions_by_entity = {
        "Ticket": _ticket_actions(),
        "RmaRequest": _rma_actions(),
        "Requisition": _stock_actions(REQUISITION_FSM, REQUISITION_PERMISSIONS, "requisition"),
        "StockTransfer": _stock_actions(TRANSFER_FSM, TRANSFER_PERMISSIONS, "transfer"),
    }
    for schema_name, coll, id_param, service in ENTITIES:
        frag = build_service_paths(schema_name, coll, id_param, actions_by_entity.get(schema_name, []))
        list_path = f"/{coll}"
        single_path = f"{list_path}/{{{id_param}}}"
        # Read permission for list & single resource endpoints
        for p in (list_path, single_path):
            for meth in ("get", "head"):
                frag[p][meth].setdefault("x-required-permissions", [f"{service}.READ"])
        for k, v in frag.items():
            paths[k] = v

    paths.update(_extra_paths())

    # Add operationIds & tags
    tag_desc: Dict[str, str] = {}
    for path, ops in paths.items():
        tag = path.split("/")[1].capitalize()
        for method, od in ops.items():
            rid = path.strip("/").replace("/", "_").replace("{", "").replace("}", "").replace("-", "_")
            od["operationId"] = f"auto_{method}_{rid}"
            od["tags"] = [tag]
        tag_desc[tag] = f"{tag} endpoints"

    return {
        "openapi": "3.0.3",
        "info": {"title": "TicketOps API", "version": "0.1.0"},
        "paths": paths,
        "components": components,
        "security": [{"BearerAuth": []}],
        "tags": [{"name": n, "description": d} for n, d in sorted(tag_desc.items())],
    }
