from __future__ import annotations

from typing import Any

from ..repositories.base_repository import EntityStore

KANBAN_ENTITY = "KanbanConfig"
RFP_15_COLUMN_BOARD_NAME = "15-Column RFP Workflow"


class DuplicateBoardName(Exception):
    pass


# (id, label, color, phase, checklist) for the locked workflow phases.
# Checklist entries: (id, label, type, associated_action or None, required).
_PHASES: list[tuple[str, str, str, str, list[tuple[str, str, str, str | None, bool]]]] = [
    ("new", "New", "from-slate-400 to-slate-600", "phase1", [
        ("basic_info", "Add Basic Information", "modal_trigger", "open_modal_phase1", True),
        ("name_solicitation", "Name & Solicitation #", "system_check", None, True),
    ]),
    ("evaluate", "Evaluate", "from-blue-400 to-blue-600", "phase1", [
        ("identify_prime", "Identify Prime Contractor", "modal_trigger", "open_modal_phase1", True),
        ("add_partners", "Add Teaming Partners", "manual_check", None, False),
    ]),
    ("qualify", "Qualify", "from-cyan-400 to-cyan-600", "phase3", [
        ("solicitation_details", "Enter Solicitation Details", "modal_trigger", "open_modal_phase3", True),
        ("contract_value", "Add Contract Value", "system_check", None, True),
        ("due_date", "Set Due Date", "system_check", None, True),
    ]),
    ("gather", "Gather", "from-teal-400 to-teal-600", "phase2", [
        ("upload_solicitation", "Upload Solicitation Document", "modal_trigger", "open_modal_phase2", True),
        ("reference_docs", "Add Reference Documents", "modal_trigger", "open_modal_phase2", False),
    ]),
    ("analyze", "Analyze", "from-green-400 to-green-600", "phase3", [
        ("run_ai_analysis", "Run AI Compliance Analysis", "ai_trigger", "run_ai_analysis_phase3", True),
        ("review_requirements", "Review Compliance Requirements", "manual_check", None, True),
    ]),
    ("strategy", "Strategy", "from-lime-400 to-lime-600", "phase4", [
        ("run_evaluation", "Run Strategic Evaluation", "ai_trigger", "run_evaluation_phase4", True),
        ("go_no_go", "Make Go/No-Go Decision", "manual_check", None, True),
        ("competitor_analysis", "Complete Competitor Analysis", "modal_trigger", "open_modal_phase4", False),
    ]),
    ("outline", "Outline", "from-yellow-400 to-yellow-600", "phase5", [
        ("select_sections", "Select Proposal Sections", "modal_trigger", "open_modal_phase5", True),
        ("generate_win_themes", "Generate Win Themes", "ai_trigger", "generate_win_themes_phase5", False),
        ("set_strategy", "Set Writing Strategy", "modal_trigger", "open_modal_phase5", True),
    ]),
    ("drafting", "Drafting", "from-orange-400 to-orange-600", "phase6", [
        ("start_writing", "Start Content Generation", "modal_trigger", "open_modal_phase6", True),
        ("complete_sections", "Complete All Sections", "system_check", None, True),
    ]),
    ("review", "Review", "from-amber-400 to-amber-600", "phase7", [
        ("internal_review", "Complete Internal Review", "manual_check", None, True),
        ("red_team", "Conduct Red Team Review", "modal_trigger", "open_red_team_review", False),
    ]),
    ("final", "Final", "from-rose-400 to-rose-600", "phase7", [
        ("readiness_check", "Run Submission Readiness Check", "ai_trigger", "run_readiness_check_phase7", True),
        ("final_review", "Final Executive Review", "manual_check", None, True),
    ]),
]

_TERMINALS: list[tuple[str, str, str]] = [
    ("submitted", "Submitted", "from-indigo-400 to-indigo-600"),
    ("won", "Won", "from-green-500 to-emerald-600"),
    ("lost", "Lost", "from-red-400 to-red-600"),
    ("archived", "Archive", "from-gray-400 to-gray-600"),
]


def rfp_15_column_columns() -> list[dict[str, Any]]:
    columns: list[dict[str, Any]] = []
    for order, (cid, label, color, phase, checklist) in enumerate(_PHASES):
        items = []
        for i, (item_id, item_label, item_type, action, required) in enumerate(checklist):
            item: dict[str, Any] = {
                "id": item_id,
                "label": item_label,
                "type": item_type,
                "required": required,
                "order": i,
            }
            if action:
                item["associated_action"] = action
            items.append(item)
        columns.append(
            {
                "id": cid,
                "label": label,
                "color": color,
                "type": "locked_phase",
                "phase_mapping": phase,
                "is_locked": True,
                "is_template_locked": True,
                "order": order,
                "checklist_items": items,
            }
        )

    # Leaving the final phase needs sign-off.
    columns[-1]["requires_approval_to_exit"] = True
    columns[-1]["approver_roles"] = ["organization_owner", "proposal_manager"]

    for offset, (cid, label, color) in enumerate(_TERMINALS):
        columns.append(
            {
                "id": cid,
                "label": label,
                "color": color,
                "type": "default_status",
                "default_status_mapping": cid,
                "is_locked": True,
                "is_terminal": True,
                "order": len(_PHASES) + offset,
                "checklist_items": [],
            }
        )
    return columns


def rfp_15_column_board(organization_id: str, *, board_name: str = RFP_15_COLUMN_BOARD_NAME) -> dict[str, Any]:
    return {
        "organization_id": organization_id,
        "board_type": "rfp_15_column",
        "board_name": board_name,
        "is_master_board": False,
        "applies_to_proposal_types": ["RFP_15_COLUMN"],
        "simplified_workflow": False,
        "columns": rfp_15_column_columns(),
        "collapsed_column_ids": [],
        "swimlane_config": {
            "enabled": False,
            "group_by": "none",
            "custom_field_name": "",
            "show_empty_swimlanes": False,
        },
        "view_settings": {
            "default_view": "kanban",
            "show_card_details": ["assignees", "due_date", "progress", "value"],
            "compact_mode": False,
        },
    }


def _name_key(name: Any) -> str:
    return str(name or "").strip().lower()


def create_rfp_15_column_board(
    store: EntityStore, organization_id: str, *, extra: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Create the RFP workflow board; raises DuplicateBoardName if the name is taken."""
    wanted = _name_key(RFP_15_COLUMN_BOARD_NAME)
    for board in store.filter(KANBAN_ENTITY, {"organization_id": organization_id}):
        if _name_key(board.get("board_name")) == wanted:
            raise DuplicateBoardName(
                f'A board named "{board.get("board_name")}" already exists. '
                "Please delete or rename the existing board first."
            )
    return store.create(KANBAN_ENTITY, {**rfp_15_column_board(organization_id), **(extra or {})})


class UnknownBoardType(ValueError):
    pass


# Each board type: default name, proposal types it applies to, and columns.
# Column tuples: (id, label, color, type, mapping). The mapping is the phase for
# locked phases, the default status for status columns, and None for custom stages.
_SUBMITTED = ("submitted", "Submitted", "from-indigo-500 to-indigo-700", "default_status", "submitted")
_WON = ("won", "Won", "from-green-500 to-green-700", "default_status", "won")
_LOST = ("lost", "Lost", "from-red-500 to-red-700", "default_status", "lost")
_ARCHIVED = ("archived", "Archived", "from-gray-500 to-gray-700", "default_status", "archived")
_TERMINAL_STATUSES = {"submitted", "won", "lost", "archived"}

BOARD_TYPES: dict[str, tuple[str, list[str], list[tuple[str, str, str, str, str | None]]]] = {
    "rfp": ("RFP Board", ["RFP"], [
        ("rfp_initiate", "Initiate", "from-slate-400 to-slate-600", "locked_phase", "phase1"),
        ("rfp_team", "Team Setup", "from-blue-400 to-blue-600", "locked_phase", "phase2"),
        ("rfp_resources", "Gather Resources", "from-cyan-400 to-cyan-600", "locked_phase", "phase3"),
        ("rfp_solicit", "Upload Solicitation", "from-indigo-400 to-indigo-600", "locked_phase", "phase4"),
        ("rfp_evaluate", "Evaluate", "from-purple-400 to-purple-600", "locked_phase", "phase5"),
        ("rfp_strategy", "Develop Strategy", "from-pink-400 to-pink-600", "locked_phase", "phase6"),
        ("rfp_write", "Write Content", "from-orange-400 to-orange-600", "locked_phase", "phase7"),
        ("rfp_price", "Build Pricing", "from-amber-400 to-amber-600", "locked_phase", "phase8"),
        _SUBMITTED, _WON, _LOST, _ARCHIVED,
    ]),
    "rfi": ("RFI Board", ["RFI"], [
        ("rfi_new", "New", "from-slate-400 to-slate-600", "default_status", "evaluating"),
        ("rfi_gather", "Gather Info", "from-blue-400 to-blue-600", "custom_stage", None),
        ("rfi_draft", "Draft Response", "from-purple-400 to-purple-600", "default_status", "draft"),
        ("rfi_review", "Internal Review", "from-amber-400 to-amber-600", "default_status", "in_progress"),
        _SUBMITTED, _ARCHIVED,
    ]),
    "sbir": ("SBIR/STTR Board", ["SBIR"], [
        ("sbir_concept", "Concept Development", "from-purple-400 to-purple-600", "custom_stage", None),
        ("sbir_research", "Research Plan", "from-blue-400 to-blue-600", "custom_stage", None),
        ("sbir_tech", "Technical Approach", "from-cyan-400 to-cyan-600", "custom_stage", None),
        ("sbir_commercial", "Commercialization", "from-green-400 to-green-600", "custom_stage", None),
        ("sbir_budget", "Budget Build", "from-amber-400 to-amber-600", "custom_stage", None),
        ("sbir_final", "Final Review", "from-orange-400 to-orange-600", "custom_stage", None),
        _SUBMITTED,
        ("won", "Awarded", "from-green-500 to-green-700", "default_status", "won"),
        ("lost", "Not Selected", "from-red-500 to-red-700", "default_status", "lost"),
    ]),
    "gsa": ("GSA Schedule Board", ["GSA"], [
        ("gsa_prep", "Preparation", "from-blue-400 to-blue-600", "custom_stage", None),
        ("gsa_pricing", "Pricing Matrix", "from-green-400 to-green-600", "custom_stage", None),
        ("gsa_compliance", "Compliance Check", "from-amber-400 to-amber-600", "custom_stage", None),
        ("gsa_docs", "Documentation", "from-purple-400 to-purple-600", "custom_stage", None),
        _SUBMITTED,
        ("won", "Approved", "from-green-500 to-green-700", "default_status", "won"),
        _ARCHIVED,
    ]),
    "idiq": ("IDIQ/BPA Board", ["IDIQ"], [
        ("idiq_qualify", "Qualification", "from-slate-400 to-slate-600", "custom_stage", None),
        ("idiq_capability", "Capability Statement", "from-blue-400 to-blue-600", "custom_stage", None),
        ("idiq_pricing", "Pricing Strategy", "from-green-400 to-green-600", "custom_stage", None),
        ("idiq_past_perf", "Past Performance", "from-purple-400 to-purple-600", "custom_stage", None),
        ("idiq_final", "Final Package", "from-amber-400 to-amber-600", "custom_stage", None),
        _SUBMITTED,
        ("won", "Awarded", "from-green-500 to-green-700", "default_status", "won"),
        _ARCHIVED,
    ]),
    "state_local": ("State/Local Board", ["STATE_LOCAL"], [
        ("sl_new", "New Opportunity", "from-slate-400 to-slate-600", "default_status", "evaluating"),
        ("sl_prep", "Prep & Research", "from-blue-400 to-blue-600", "custom_stage", None),
        ("sl_draft", "Draft Proposal", "from-purple-400 to-purple-600", "default_status", "draft"),
        ("sl_review", "Review", "from-amber-400 to-amber-600", "default_status", "in_progress"),
        _SUBMITTED, _WON, _LOST,
    ]),
}


def type_specific_columns(board_type: str) -> list[dict[str, Any]]:
    try:
        _, _, spec = BOARD_TYPES[board_type]
    except KeyError as e:
        raise UnknownBoardType(
            f"Invalid board type. Must be one of: {', '.join(BOARD_TYPES)}"
        ) from e

    columns = []
    for order, (cid, label, color, col_type, mapping) in enumerate(spec):
        column: dict[str, Any] = {"id": cid, "label": label, "color": color, "order": order, "type": col_type}
        if col_type == "locked_phase":
            column["phase_mapping"] = mapping
        elif col_type == "default_status":
            column["default_status_mapping"] = mapping
        terminal = col_type == "default_status" and mapping in _TERMINAL_STATUSES
        if terminal:
            column["is_terminal"] = True
        column["checklist_items"] = []
        column["is_locked"] = col_type == "locked_phase" or terminal
        column["wip_limit"] = 0
        columns.append(column)
    return columns


def create_type_specific_board(
    store: EntityStore,
    organization_id: str,
    board_type: str,
    *,
    board_name: str | None = None,
    extra: dict[str, Any] | None = None,
) -> tuple[dict[str, Any], bool]:
    """Create the board for a proposal type once per organization.

    Returns (board, was_created). An existing board of the same type is
    returned unchanged.
    """
    columns = type_specific_columns(board_type)
    existing = store.filter(KANBAN_ENTITY, {"organization_id": organization_id, "board_type": board_type}, limit=1)
    if existing:
        return existing[0], False

    default_name, proposal_types, _ = BOARD_TYPES[board_type]
    board = {
        "organization_id": organization_id,
        "board_type": board_type,
        "board_name": (board_name or "").strip() or default_name,
        "is_master_board": False,
        "applies_to_proposal_types": list(proposal_types),
        "simplified_workflow": False,
        "columns": columns,
        "collapsed_column_ids": [],
        "swimlane_config": {"enabled": False, "group_by": "none", "show_empty_swimlanes": False},
        "view_settings": {
            "default_view": "kanban",
            "show_card_details": ["assignees", "due_date", "progress", "value", "tasks"],
            "compact_mode": False,
        },
    }
    return store.create(KANBAN_ENTITY, {**board, **(extra or {})}), True
