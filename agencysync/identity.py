"""Match a sheet row to a stored record, or a stored record to a sheet row.

Lookup runs a fixed cascade of natural keys and stops at the first hit:

1. policy number + product type
2. name + mobile number + product type
3. customer id
4. G-code
5. registration number

Key components are trimmed and lower-cased. A key with a blank component is
never built, so two rows that both lack a policy number are not matched on
that strategy. Layouts without a product type column (the life tab) build
strategies 1 and 2 without it.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Set, Tuple, TypeVar

from agencysync.cell_format import clean, normalize_mobile

logger = logging.getLogger(__name__)

T = TypeVar("T")

STRATEGY_POLICY_PRODUCT = "policy+product"
STRATEGY_NAME_MOBILE_PRODUCT = "name+mobile+product"
STRATEGY_CUSTOMER_ID = "customer_id"
STRATEGY_G_CODE = "g_code"
STRATEGY_REGISTRATION = "registration"
STRATEGY_ROW = "row"

CASCADE: Tuple[str, ...] = (
    STRATEGY_POLICY_PRODUCT,
    STRATEGY_NAME_MOBILE_PRODUCT,
    STRATEGY_CUSTOMER_ID,
    STRATEGY_G_CODE,
    STRATEGY_REGISTRATION,
)

_SEPARATOR = "\x1f"

Key = Tuple[str, str]


def _norm(value: Any) -> str:
    return clean(value).lower()


def _components(strategy: str, fields: Mapping[str, Any], use_product: bool) -> List[str]:
    product = [_norm(fields.get("product_type"))] if use_product else []
    if strategy == STRATEGY_POLICY_PRODUCT:
        return [_norm(fields.get("current_policy_no"))] + product
    if strategy == STRATEGY_NAME_MOBILE_PRODUCT:
        return [
            _norm(fields.get("name")),
            normalize_mobile(fields.get("mobile_number")).lower(),
        ] + product
    if strategy == STRATEGY_CUSTOMER_ID:
        return [_norm(fields.get("customer_id"))]
    if strategy == STRATEGY_G_CODE:
        return [_norm(fields.get("g_code"))]
    if strategy == STRATEGY_REGISTRATION:
        return [_norm(fields.get("registration_no"))]
    raise ValueError(f"Unknown identity strategy: {strategy}")


def identity_keys(fields: Mapping[str, Any], *, use_product: bool = True) -> List[Key]:
    """Return ``(strategy, key)`` pairs for every strategy ``fields`` supports."""

    keys: List[Key] = []
    for strategy in CASCADE:
        parts = _components(strategy, fields, use_product)
        if all(parts):
            keys.append((strategy, _SEPARATOR.join(parts)))
    return keys


_STRONG_FIELDS = ("current_policy_no", "registration_no", "customer_id", "g_code")
_WEAK_FIELDS = ("name", "mobile_number", "email")


def _identifier(fields: Mapping[str, Any], name: str) -> str:
    if name == "mobile_number":
        return normalize_mobile(fields.get(name)).lower()
    return _norm(fields.get(name))


def _agreement(left: Mapping[str, Any], right: Mapping[str, Any], names: Tuple[str, ...]) -> Optional[bool]:
    """``True`` if any shared field agrees, ``False`` if all disagree, ``None`` if none is shared."""

    verdict: Optional[bool] = None
    for name in names:
        mine, theirs = _identifier(left, name), _identifier(right, name)
        if not mine or not theirs:
            continue
        if mine == theirs:
            return True
        verdict = False
    return verdict


def plausibly_same(left: Mapping[str, Any], right: Mapping[str, Any]) -> bool:
    """Return ``True`` only when some identifier positively agrees.

    Used to vet a stored sheet row number: once a row has been inserted above,
    the stored position points at somebody else. Policy, registration,
    customer id and G-code are checked first and a disagreement there is
    final. Otherwise name, mobile or email must match on their own. Records
    with nothing to compare are not the same.
    """

    strong = _agreement(left, right, _STRONG_FIELDS)
    if strong is not None:
        return strong
    return bool(_agreement(left, right, _WEAK_FIELDS))


class IdentityIndex(Generic[T]):
    """Cascade lookup over a set of entries keyed by their natural identifiers.

    Entries are stored by object identity so the same index serves stored
    records (inbound) and parsed sheet rows (outbound). When several entries
    share a key the most recently added one wins.
    """

    def __init__(self, *, use_product: bool = True) -> None:
        self.use_product = use_product
        self._by_key: Dict[Key, List[T]] = {}
        self._keys_of: Dict[int, List[Key]] = {}
        self._rows_of: Dict[int, int] = {}
        self._by_row: Dict[int, T] = {}

    def __len__(self) -> int:
        return len(self._keys_of)

    def keys_for(self, fields: Mapping[str, Any]) -> List[Key]:
        return identity_keys(fields, use_product=self.use_product)

    def add(self, entry: T, fields: Mapping[str, Any], row_number: Optional[int] = None) -> None:
        self.discard(entry)
        keys = self.keys_for(fields)
        for key in keys:
            self._by_key.setdefault(key, []).append(entry)
        self._keys_of[id(entry)] = keys
        if row_number:
            self._by_row[row_number] = entry
            self._rows_of[id(entry)] = row_number

    def discard(self, entry: T) -> None:
        for key in self._keys_of.pop(id(entry), ()):
            bucket = self._by_key.get(key, [])
            self._by_key[key] = [item for item in bucket if item is not entry]
            if not self._by_key[key]:
                del self._by_key[key]
        row_number = self._rows_of.pop(id(entry), None)
        if row_number is not None and self._by_row.get(row_number) is entry:
            del self._by_row[row_number]

    def by_row(self, row_number: Optional[int]) -> Optional[T]:
        if not row_number:
            return None
        return self._by_row.get(row_number)

    def resolve(
        self, fields: Mapping[str, Any], *, exclude: Optional[Set[int]] = None
    ) -> Optional[Tuple[str, T]]:
        """Return ``(strategy, entry)`` for the first cascade hit, if any.

        ``exclude`` holds ``id()`` values of entries already claimed in this
        pass; they are skipped.
        """

        for strategy, key in self.keys_for(fields):
            for entry in reversed(self._by_key.get((strategy, key), ())):
                if exclude and id(entry) in exclude:
                    continue
                return strategy, entry
        return None

    def resolve_row_first(
        self,
        fields: Mapping[str, Any],
        row_number: Optional[int],
        fields_of: Callable[[T], Mapping[str, Any]],
        *,
        exclude: Optional[Set[int]] = None,
    ) -> Optional[Tuple[str, T]]:
        """Try the stored row position before the cascade.

        A row-position hit is only accepted when ``fields_of(entry)`` does not
        contradict ``fields``; otherwise the cascade decides.
        """

        candidate = self.by_row(row_number)
        if candidate is not None and not (exclude and id(candidate) in exclude):
            if plausibly_same(fields, fields_of(candidate)):
                return STRATEGY_ROW, candidate
            logger.info(
                "Row %s no longer holds the record stored for it; matching by keys", row_number
            )
        return self.resolve(fields, exclude=exclude)


__all__ = [
    "CASCADE",
    "IdentityIndex",
    "STRATEGY_CUSTOMER_ID",
    "STRATEGY_G_CODE",
    "STRATEGY_NAME_MOBILE_PRODUCT",
    "STRATEGY_POLICY_PRODUCT",
    "STRATEGY_REGISTRATION",
    "STRATEGY_ROW",
    "identity_keys",
    "plausibly_same",
]
