"""Per-client spreadsheet layouts.

Every insurance client keeps its own spreadsheet with its own column headers.
A layout is described as ``internal field -> header text`` per tab type and
validated when the registry is built, so a broken mapping fails before any
sync runs.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from agencysync.models import CUSTOMER_TAB_TYPES, TAB_GENERAL, TAB_LEADS, TAB_LIFE

logger = logging.getLogger(__name__)

CUSTOMER_REQUIRED_FIELDS: Tuple[str, ...] = ("name", "mobile_number", "status")
LEAD_REQUIRED_FIELDS: Tuple[str, ...] = ("name", "mobile_number")


class ConfigurationError(ValueError):
    """Raised when the client registry or settings are invalid."""


class SchemaNotFoundError(ConfigurationError):
    """Raised when a client has no layout registered for a tab type."""


@dataclass(frozen=True)
class TabConfig:
    tab_name: str
    schema: Mapping[str, str]


@dataclass(frozen=True)
class ClientConfig:
    key: str
    name: str
    spreadsheet_id: str
    identifiers: Tuple[str, ...]
    tabs: Mapping[str, TabConfig] = field(default_factory=dict)

    def tab(self, tab_type: str) -> TabConfig:
        try:
            return self.tabs[tab_type]
        except KeyError:
            raise SchemaNotFoundError(
                f"No schema found for tab type '{tab_type}' (client '{self.key}')"
            ) from None

    def matches(self, text: str) -> bool:
        lowered = (text or "").lower()
        return any(identifier in lowered for identifier in self.identifiers)


_GENERAL_KMG = {
    "name": "NAME",
    "mobile_number": "MOBILE NO",
    "email": "EMAIL ID",
    "current_policy_no": "POLICY NO",
    "company": "COMPANY",
    "registration_no": "VEH NO",
    "premium": "AMOUNT",
    "premium_mode": "Premium mode",
    "last_year_premium": "LAST YEAR PREMIUM",
    "renewal_date": "MODIFIED EXPIRY DATE",
    "od_expiry_date": "Policy Expiry Date",
    "tp_expiry_date": "TP Expiry Date",
    "payment_date": "DEPOSITED/ PAYMENT DATE",
    "policy_start_date": "Policy start date",
    "paid_by": "Paid by",
    "status": "STATUS",
    "thank_you_sent": "Thankyou message sent yes/no",
    "new_policy_no": "NEW POLICY NO",
    "new_company": "NEW POLICY COMPANY",
    "product_type": "Product Type",
    "product_model": "Product Model",
    "vertical": "TYPE",
    "notes": "REMARKS",
    "cheque_no": "CHQ NO & DATE",
    "bank_name": "BANK NAME",
    "customer_id": "CUSTOMER ID",
    "agent_code": "AGENT CODE",
    "pancard": "PANCARD",
    "aadhar_card": "AADHAR CARD",
    "others_doc": "OTHERS - VI/DL/PP",
    "g_code": "G CODE",
    "dob": "DOB",
    "gst_no": "GST NO",
}

_LEADS = {
    "s_no": "S No",
    "name": "Name",
    "mobile_number": "Mobile No",
    "email": "Email ID",
    "interested_in": "Interested In",
    "policy_expiry_date": "Policy Expiry Date",
    "follow_up_date": "Follow Up Date",
    "lead_status": "Lead Status",
    "priority": "Priority",
    "notes": "Notes",
    "referral_by": "Referral By",
}

DEFAULT_CLIENTS: Dict[str, Dict[str, object]] = {
    "kmg": {
        "name": "KMG Insurance Agency",
        "identifiers": ["kmg", "kmginsurance"],
        "spreadsheet_id": "1qV6K3t7zpQl2pild6q2i1iS6ga9Zd6QQgu3nvyIEmN0",
        "tabs": {
            TAB_GENERAL: {"tab_name": "kmg_general_ins", "schema": _GENERAL_KMG},
            TAB_LIFE: {
                "tab_name": "kmg_Life_ins",
                "schema": {
                    "name": "NAME",
                    "mobile_number": "MOBILE NO",
                    "email": "EMAIL ID",
                    "current_policy_no": "POLICY NO",
                    "company": "INSURER",
                    "premium": "PREMIUM",
                    "premium_mode": "MD",
                    "renewal_date": "DATE OF EXPIRY",
                    "payment_date": "PAYMENT DATE",
                    "status": "STATUS",
                    "thank_you_sent": "THANKYOU MESSAGE SENT",
                    "notes": "REMARKS",
                },
            },
            TAB_LEADS: {"tab_name": "Lead_Management", "schema": _LEADS},
        },
    },
    "joban": {
        "name": "Joban Putra Insurance",
        "identifiers": ["joban", "jobanputra", "joban putra"],
        "spreadsheet_id": "1SJY8rPUbhr1NUhKELpuLPU9dhlhz86ZWQ0AI5s4dj40",
        "tabs": {
            TAB_GENERAL: {
                "tab_name": "general_ins",
                "schema": {
                    "s_no": "S NO",
                    "name": "NAME",
                    "current_policy_no": "POLICY NO",
                    "g_code": "G CODE",
                    "last_year_premium": "LAST YEAR PREMIUM",
                    "od_expiry_date": "Policy Expiry Date",
                    "renewal_date": "MODIFIED EXPIRY DATE",
                    "company": "COMPANY",
                    "vertical": "TYPE",
                    "payment_date": "DEPOSITED/ PAYMENT DATE",
                    "policy_start_date": "Policy start date",
                    "paid_by": "Paid by",
                    "chq_no_date": "CHQ NO & DATE",
                    "bank_name": "BANK NAME",
                    "customer_id": "CUSTOMER ID",
                    "agent_code": "AGENT CODE",
                    "premium": "AMOUNT",
                    "new_policy_no": "NEW POLICY NO",
                    "new_company": "NEW POLICY COMPANY",
                    "product_type": "Product Type",
                    "product_model": "Product Model",
                    "registration_no": "VEH NO",
                    "tp_expiry_date": "TP Expiry Date",
                    "premium_mode": "Premium mode",
                    "email": "EMAIL ID",
                    "mobile_number": "MOBILE NO",
                    "status": "STATUS",
                    "thank_you_sent": "Thankyou message sent yes/no",
                    "notes": "REMARKS",
                    "pancard": "PANCARD",
                    "aadhar_card": "AADHAR CARD",
                    "others": "OTHERS - VI/DL/PP",
                    "dob": "DOB",
                    "gst_no": "GST NO",
                },
            },
            TAB_LIFE: {
                "tab_name": "Life_ins",
                "schema": {
                    "status": "STATUS",
                    "thank_you_sent": "THANKYOU MESSAGE SENT",
                    "renewal_date": "DATE OF EXPIRY",
                    "current_policy_no": "POLICY NO",
                    "name": "NAME",
                    "email": "EMAIL ID",
                    "mobile_number": "MOBILE NO",
                    "premium": "PREMIUM",
                    "company": "INSURER",
                    "premium_mode": "MD",
                    "notes": "REMARKS",
                },
            },
            TAB_LEADS: {"tab_name": "Lead_Management", "schema": _LEADS},
        },
    },
}
DEFAULT_CLIENT_KEY = "kmg"


def _require_text(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{label} must be a non-empty string")
    return value.strip()


def _parse_tab(client_key: str, tab_type: str, payload: object) -> TabConfig:
    label = f"clients.{client_key}.tabs.{tab_type}"
    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"{label} must be an object")
    tab_name = _require_text(payload.get("tab_name"), f"{label}.tab_name")
    raw_schema = payload.get("schema")
    if not isinstance(raw_schema, Mapping) or not raw_schema:
        raise ConfigurationError(f"{label}.schema must be a non-empty object")

    schema: Dict[str, str] = {}
    seen_headers: Dict[str, str] = {}
    for field_name, header in raw_schema.items():
        header_text = _require_text(header, f"{label}.schema.{field_name}")
        if header_text in seen_headers:
            raise ConfigurationError(
                f"{label}.schema maps '{header_text}' to both "
                f"'{seen_headers[header_text]}' and '{field_name}'"
            )
        seen_headers[header_text] = str(field_name)
        schema[str(field_name)] = header_text

    required: Iterable[str] = ()
    if tab_type in CUSTOMER_TAB_TYPES:
        required = CUSTOMER_REQUIRED_FIELDS
    elif tab_type == TAB_LEADS:
        required = LEAD_REQUIRED_FIELDS
    missing = [name for name in required if name not in schema]
    if missing:
        raise ConfigurationError(f"{label}.schema is missing fields: {', '.join(missing)}")
    return TabConfig(tab_name=tab_name, schema=schema)


def _parse_client(key: str, payload: object) -> ClientConfig:
    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"clients.{key} must be an object")
    tabs_payload = payload.get("tabs")
    if not isinstance(tabs_payload, Mapping) or not tabs_payload:
        raise ConfigurationError(f"clients.{key}.tabs must define at least one tab")
    raw_identifiers = payload.get("identifiers") or [key]
    if isinstance(raw_identifiers, str):
        raw_identifiers = [raw_identifiers]
    identifiers = tuple(str(item).strip().lower() for item in raw_identifiers if str(item).strip())
    return ClientConfig(
        key=key,
        name=str(payload.get("name") or key),
        spreadsheet_id=_require_text(payload.get("spreadsheet_id"), f"clients.{key}.spreadsheet_id"),
        identifiers=identifiers or (key.lower(),),
        tabs={
            str(tab_type): _parse_tab(key, str(tab_type), tab_payload)
            for tab_type, tab_payload in tabs_payload.items()
        },
    )


class ClientRegistry:
    """Validated lookup of client layouts."""

    def __init__(self, clients: Sequence[ClientConfig], default_key: str = DEFAULT_CLIENT_KEY) -> None:
        if not clients:
            raise ConfigurationError("At least one client must be configured")
        self._clients: Dict[str, ClientConfig] = {client.key: client for client in clients}
        if default_key not in self._clients:
            raise ConfigurationError(f"Default client '{default_key}' is not configured")
        self._default_key = default_key

    @classmethod
    def from_mapping(
        cls, payload: Mapping[str, object], default_key: Optional[str] = None
    ) -> "ClientRegistry":
        clients = [_parse_client(str(key), value) for key, value in payload.items()]
        if default_key is None:
            default_key = DEFAULT_CLIENT_KEY if DEFAULT_CLIENT_KEY in payload else next(iter(payload), "")
        return cls(clients, default_key=default_key)

    @classmethod
    def from_file(cls, path: Path) -> "ClientRegistry":
        try:
            with Path(path).open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Unable to load client registry {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigurationError("Client registry file must contain an object")
        clients = data.get("clients", data)
        default_key = data.get("default") if isinstance(data.get("default"), str) else None
        if not isinstance(clients, Mapping):
            raise ConfigurationError("'clients' must be an object")
        return cls.from_mapping(clients, default_key=default_key)

    @classmethod
    def default(cls) -> "ClientRegistry":
        return cls.from_mapping(DEFAULT_CLIENTS)

    @property
    def default_client(self) -> ClientConfig:
        return self._clients[self._default_key]

    def get(self, key: str) -> ClientConfig:
        try:
            return self._clients[key]
        except KeyError:
            raise ConfigurationError(f"Unknown client '{key}'") from None

    def for_identifier(self, identifier: Optional[str]) -> ClientConfig:
        """Return the client whose identifiers appear in ``identifier`` (usually an email)."""

        text = identifier or ""
        for client in self._clients.values():
            if client.matches(text):
                return client
        return self.default_client

    def keys(self) -> Tuple[str, ...]:
        return tuple(self._clients)


def load_registry(path: Optional[str] = None) -> ClientRegistry:
    if path:
        logger.info("Loading client registry from %s", path)
        return ClientRegistry.from_file(Path(path))
    return ClientRegistry.default()


__all__ = [
    "ClientConfig",
    "ClientRegistry",
    "ConfigurationError",
    "DEFAULT_CLIENTS",
    "SchemaNotFoundError",
    "TabConfig",
    "load_registry",
]
