"""Plan mapping between provider price ids and internal entitlements."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

from .models import BillingModel


@dataclass(frozen=True)
class PlanMappingEntry:
    """Describes the entitlement granted for one provider price id."""

    price_id: str
    plan_code: str
    billing_model: BillingModel
    is_addon: bool = False
    renewable_credits: int = 0
    payasyougo_credits: int = 0
    extra_slots: int = 0
    price: Optional[float] = None
    display_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.plan_code

    @classmethod
    def from_dict(cls, price_id: str, data: Mapping[str, Any]) -> "PlanMappingEntry":
        try:
            billing_model = BillingModel(str(data["billingModel"]))
            plan_code = str(data["planCode"])
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Invalid plan mapping entry for {price_id!r}") from exc
        price = data.get("price")
        return cls(
            price_id=price_id,
            plan_code=plan_code,
            billing_model=billing_model,
            is_addon=bool(data.get("isAddon", False)),
            renewable_credits=int(data.get("renewableCredits", 0)),
            payasyougo_credits=int(data.get("payasyougoCredits", 0)),
            extra_slots=int(data.get("extraSlots", 0)),
            price=float(price) if price is not None else None,
            display_name=data.get("displayName"),
        )


class PlanMapping(Mapping[str, PlanMappingEntry]):
    """Immutable lookup table loaded once at process start."""

    def __init__(self, entries: Iterable[PlanMappingEntry]) -> None:
        table: Dict[str, PlanMappingEntry] = {}
        for entry in entries:
            if entry.price_id in table:
                raise ValueError(f"Duplicate plan mapping for {entry.price_id!r}")
            table[entry.price_id] = entry
        self._entries = MappingProxyType(table)

    def __getitem__(self, price_id: str) -> PlanMappingEntry:
        return self._entries[price_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, price_id: Optional[str]) -> Optional[PlanMappingEntry]:
        if not price_id:
            return None
        return self._entries.get(price_id)


CONTEXT_ADDON_PRICE_ID = "Context-Addon-Monthly-USD-Monthly"

DEFAULT_PLAN_ENTRIES: Tuple[PlanMappingEntry, ...] = (
    PlanMappingEntry(
        price_id="Silver-Monthly",
        plan_code="silver-monthly",
        billing_model=BillingModel.MONTHLY,
        renewable_credits=30,
        display_name="Silver Monthly",
    ),
    PlanMappingEntry(
        price_id="Gold-Monthly",
        plan_code="gold-monthly",
        billing_model=BillingModel.MONTHLY,
        renewable_credits=100,
        display_name="Gold Monthly",
    ),
    PlanMappingEntry(
        price_id="Platinum-Monthly",
        plan_code="platinum-monthly",
        billing_model=BillingModel.MONTHLY,
        renewable_credits=250,
        display_name="Platinum Monthly",
    ),
    PlanMappingEntry(
        price_id="Silver-PAYG-USD",
        plan_code="silver-payasyougo",
        billing_model=BillingModel.ONE_TIME,
        payasyougo_credits=30,
        display_name="Silver",
    ),
    PlanMappingEntry(
        price_id="Gold-PAYG-USD",
        plan_code="gold-payasyougo",
        billing_model=BillingModel.ONE_TIME,
        payasyougo_credits=100,
        display_name="Gold",
    ),
    PlanMappingEntry(
        price_id="Platinum-PAYG-USD",
        plan_code="platinum-payasyougo",
        billing_model=BillingModel.ONE_TIME,
        payasyougo_credits=250,
        display_name="Platinum",
    ),
    PlanMappingEntry(
        price_id=CONTEXT_ADDON_PRICE_ID,
        plan_code="context-addon",
        billing_model=BillingModel.MONTHLY,
        is_addon=True,
        extra_slots=1,
        price=3.99,
        display_name="Extra Context Slot",
    ),
)


def default_plan_mapping() -> PlanMapping:
    return PlanMapping(DEFAULT_PLAN_ENTRIES)


def load_plan_mapping(path: Optional[Union[str, Path]] = None) -> PlanMapping:
    """Load the plan mapping from a JSON file, or the built-in defaults.

    The file is an object keyed by provider price id, each value holding
    ``planCode``, ``billingModel`` and optional ``isAddon``,
    ``renewableCredits``, ``payasyougoCredits``, ``extraSlots``, ``price`` and
    ``displayName`` keys.
    """

    if not path:
        return default_plan_mapping()

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Plan mapping file must contain a JSON object")
    return PlanMapping(PlanMappingEntry.from_dict(str(key), value) for key, value in raw.items())


__all__ = [
    "CONTEXT_ADDON_PRICE_ID",
    "DEFAULT_PLAN_ENTRIES",
    "PlanMapping",
    "PlanMappingEntry",
    "default_plan_mapping",
    "load_plan_mapping",
]
