"""Field sets and enumerations shared by the reconcilers."""
from __future__ import annotations

from enum import Enum
from typing import Tuple


class Vertical(str, Enum):
    MOTOR = "motor"
    HEALTH = "health"
    NON_MOTOR = "non-motor"
    LIFE = "life"


GENERAL_VERTICALS: Tuple[Vertical, ...] = (Vertical.MOTOR, Vertical.HEALTH, Vertical.NON_MOTOR)
LIFE_VERTICALS: Tuple[Vertical, ...] = (Vertical.LIFE,)

TAB_GENERAL = "general"
TAB_LIFE = "life"
TAB_LEADS = "leads"
CUSTOMER_TAB_TYPES: Tuple[str, ...] = (TAB_GENERAL, TAB_LIFE)

DEFAULT_STATUS = "due"
STATUS_VALUES: Tuple[str, ...] = ("due", "renewed", "INPROCESS", "not-renewed")
INPROCESS_TOKEN = "INPROCESS"
INPROCESS_LABEL = "IN PROCESS"

DEFAULT_LEAD_STATUS = "new"
DEFAULT_LEAD_PRIORITY = "warm"

# Columns of the ``customers`` table that carry sheet data. ``id``,
# ``user_id``, ``sheet_row_number`` and the timestamps are owned by the
# database and never written from a sheet cell.
CUSTOMER_FIELDS: Tuple[str, ...] = (
    "s_no",
    "name",
    "mobile_number",
    "email",
    "current_policy_no",
    "company",
    "registration_no",
    "product",
    "product_type",
    "product_model",
    "vertical",
    "premium",
    "premium_mode",
    "last_year_premium",
    "renewal_date",
    "modified_expiry_date",
    "od_expiry_date",
    "tp_expiry_date",
    "payment_date",
    "policy_start_date",
    "insurance_activated_date",
    "paid_by",
    "status",
    "thank_you_sent",
    "new_policy_no",
    "new_company",
    "policy_doc_link",
    "reason",
    "notes",
    "cheque_no",
    "bank_name",
    "customer_id",
    "agent_code",
    "g_code",
    "pancard",
    "aadhar_card",
    "others_doc",
    "dob",
    "gst_no",
)

DATE_FIELDS = frozenset(
    {
        "renewal_date",
        "modified_expiry_date",
        "od_expiry_date",
        "tp_expiry_date",
        "payment_date",
    }
)
NUMERIC_FIELDS = frozenset({"premium", "last_year_premium"})

# Sheet schemas use a few alternate names for the same column.
FIELD_ALIASES = {
    "chq_no_date": "cheque_no",
    "others": "others_doc",
}

LEAD_FIELDS: Tuple[str, ...] = (
    "s_no",
    "name",
    "mobile_number",
    "email",
    "interested_in",
    "policy_expiry_date",
    "follow_up_date",
    "lead_status",
    "priority",
    "notes",
    "referral_by",
)
LEAD_DATE_FIELDS = frozenset({"policy_expiry_date", "follow_up_date"})


def verticals_for_tab(tab_type: str) -> Tuple[Vertical, ...]:
    """Return the verticals whose rows live on a ``tab_type`` tab."""

    if tab_type == TAB_LIFE:
        return LIFE_VERTICALS
    return GENERAL_VERTICALS


def tab_type_for_verticals(verticals) -> str:
    """Pick the tab layout an outbound push of ``verticals`` targets."""

    values = {str(getattr(v, "value", v)).strip().lower() for v in verticals or ()}
    if Vertical.LIFE.value in values and Vertical.MOTOR.value not in values:
        return TAB_LIFE
    return TAB_GENERAL


__all__ = [
    "Vertical",
    "GENERAL_VERTICALS",
    "LIFE_VERTICALS",
    "TAB_GENERAL",
    "TAB_LIFE",
    "TAB_LEADS",
    "CUSTOMER_TAB_TYPES",
    "CUSTOMER_FIELDS",
    "DATE_FIELDS",
    "NUMERIC_FIELDS",
    "FIELD_ALIASES",
    "LEAD_FIELDS",
    "LEAD_DATE_FIELDS",
    "DEFAULT_STATUS",
    "INPROCESS_TOKEN",
    "INPROCESS_LABEL",
    "verticals_for_tab",
    "tab_type_for_verticals",
]
