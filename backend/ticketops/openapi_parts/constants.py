"""Constants for the OpenAPI spec builder.

Ordering here drives ordering in the generated document; tests rely on it
being deterministic.
"""
from typing import Dict, List, Tuple

# Entity registry: (SchemaName, collection path, id param, service code)
ENTITIES: List[Tuple[str, str, str, str]] = [
    ("Ticket", "tickets", "ticket_id", "TKT"),
    ("Asset", "assets", "asset_id", "AST"),
    ("Site", "sites", "site_id", "SITE"),
    ("RmaRequest", "rma", "rma_id", "RMA"),
    ("Requisition", "stock/requisitions", "requisition_id", "STK"),
    ("StockTransfer", "stock/transfers", "transfer_id", "STK"),
]

# Permission advertised for each ticket action. Assignee-driven actions are
# gated on ownership rather than a code, so they only advertise TKT.READ.
TICKET_ACTION_PERMISSIONS: Dict[str, str] = {
    "assign": "TKT.ASSIGN",
    "acknowledge": "TKT.READ",
    "start": "TKT.READ",
    "hold": "TKT.READ",
    "resume": "TKT.READ",
    "resolve": "TKT.READ",
    "verify": "TKT.VERIFY",
    "close": "TKT.VERIFY",
    "reject_resolution": "TKT.VERIFY",
    "acknowledge_rejection": "TKT.READ",
    "escalate": "TKT.ESCALATE",
    "accept_escalation": "TKT.ESCALATION.ACCEPT",
    "delegate_escalation": "TKT.ESCALATION.DELEGATE",
    "reopen": "TKT.REOPEN",
    "cancel": "TKT.CANCEL",
}

# Site-side RMA steps are run by the ticket assignee, the rest by HO staff.
RMA_SITE_STEP_PERMISSION = "RMA.RECEIVE"
RMA_HO_STEP_PERMISSION = "RMA.MANAGE"

SORT_PARAM_MAP = {
    "Ticket": "SortTicketsParam",
    "Asset": "SortAssetsParam",
    "Site": "SortSitesParam",
    "RmaRequest": "SortRmaParam",
    "Requisition": "SortRequisitionsParam",
    "StockTransfer": "SortTransfersParam",
}

SORT_DETAILS = {
    "SortTicketsParam": "Multi-field sort (ticket_number,status,priority,priority_score,created_on,sla_restore_due,updated_at,id). Prefix - for desc",
    "SortAssetsParam": "Multi-field sort (asset_code,asset_type,status,criticality,updated_at,id). Prefix - for desc",
    "SortSitesParam": "Multi-field sort (site_code,site_name,id). Prefix - for desc",
    "SortRmaParam": "Multi-field sort (rma_number,status,created_on,updated_at,id). Prefix - for desc",
    "SortRequisitionsParam": "Multi-field sort (requisition_number,status,created_on,updated_at,id). Prefix - for desc",
    "SortTransfersParam": "Multi-field sort (transfer_number,status,created_on,updated_at,id). Prefix - for desc",
}

__all__ = [
    "ENTITIES",
    "TICKET_ACTION_PERMISSIONS",
    "RMA_SITE_STEP_PERMISSION",
    "RMA_HO_STEP_PERMISSION",
    "SORT_PARAM_MAP",
    "SORT_DETAILS",
]
