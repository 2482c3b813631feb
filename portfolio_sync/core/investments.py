"""
Per-investment-type metadata.

Each synced investment type declares which field identifies a holding at the
provider, which field carries the synced value, how to derive the reference
value from the stored holding and how to turn a fetched record into the
update written back to the holding.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from portfolio_sync.core.exceptions import ConfigurationError
from portfolio_sync.core.models import DataSource, InvestmentType, SyncStatus
from portfolio_sync.utils.clock import utc_now


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _fund_units(current: dict[str, Any]) -> float | None:
    units = _number(current.get("units"))
    if units:
        return units
    invested = _number(current.get("investedAmount"))
    purchase_price = _number(current.get("purchasePrice"))
    if invested and purchase_price:
        return invested / purchase_price
    return None


def _fund_reference_nav(current: dict[str, Any]) -> float | None:
    units = _fund_units(current)
    current_value = _number(current.get("currentValue"))
    if units and current_value is not None:
        return current_value / units
    return _number(current.get("nav"))


def _stock_reference_price(current: dict[str, Any]) -> float | None:
    price = _number(current.get("currentPrice"))
    return price if price is not None else _number(current.get("price"))


def _epf_reference_balance(current: dict[str, Any]) -> float | None:
    return _number(current.get("totalBalance"))


def _sync_stamp(now: datetime) -> dict[str, Any]:
    return {"lastSyncAt": now.isoformat(), "syncStatus": SyncStatus.SYNCED.value, "syncError": None}


def failure_stamp(now: datetime, message: str, source: str | None = None) -> dict[str, Any]:
    """Holding update recording a sync attempt that did not apply new data."""
    stamp = {"lastSyncAt": now.isoformat(), "syncStatus": SyncStatus.FAILED.value, "syncError": message}
    if source:
        stamp["syncSource"] = source
    return stamp


def _fund_update(current: dict[str, Any], data: dict[str, Any], now: datetime) -> dict[str, Any]:
    nav = float(data["nav"])
    updates: dict[str, Any] = {"nav": nav, "navDate": data.get("date")}
    units = _fund_units(current)
    if units:
        updates["units"] = units
        updates["currentValue"] = round(units * nav, 2)
    updates.update(_sync_stamp(now))
    return updates


def _stock_update(current: dict[str, Any], data: dict[str, Any], now: datetime) -> dict[str, Any]:
    price = float(data["price"])
    updates: dict[str, Any] = {"currentPrice": price}
    quantity = _number(current.get("quantity"))
    if quantity is not None:
        updates["currentValue"] = round(quantity * price, 2)
    for key in ("volume", "timestamp", "tradingStatus"):
        if data.get(key) is not None:
            updates[key] = data[key]
    updates.update(_sync_stamp(now))
    return updates


def _epf_update(current: dict[str, Any], data: dict[str, Any], now: datetime) -> dict[str, Any]:
    updates: dict[str, Any] = {"totalBalance": float(data["totalBalance"])}
    for key in ("employeeContribution", "employerContribution", "interestRate"):
        if data.get(key) is not None:
            updates[key] = float(data[key])
    updates.update(_sync_stamp(now))
    return updates


@dataclass(frozen=True)
class InvestmentTypeSpec:
    """
    Metadata for one synced investment type.

    Attributes:
        investment_type: Type this entry describes
        identifier_field: Holding field used to fetch data and to match
            fetched records back to holdings
        value_field: Field carrying the synced value in fetched records
        stored_value_field: Field the value is written to on the holding
        primary_source: Source tried first when the caller names none
        required_fields: Fields every fetched record must carry
        optional_fields: Other fields a fetched record may carry
        reference_value: Derives the comparable value from a stored holding
        build_update: Builds the holding update from (current, fetched, now)
    """

    investment_type: InvestmentType
    identifier_field: str
    value_field: str
    stored_value_field: str
    primary_source: DataSource
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...] = ()
    reference_value: Callable[[dict[str, Any]], float | None] = field(default=lambda current: None, repr=False)
    build_update: Callable[[dict[str, Any], dict[str, Any], datetime], dict[str, Any]] = field(
        default=lambda current, data, now: dict(data), repr=False
    )

    def update_payload(self, current: dict[str, Any], data: dict[str, Any],
                       now: datetime | None = None) -> dict[str, Any]:
        return self.build_update(current or {}, data, now or utc_now())


INVESTMENT_SPECS: dict[InvestmentType, InvestmentTypeSpec] = {
    InvestmentType.MUTUAL_FUNDS: InvestmentTypeSpec(
        investment_type=InvestmentType.MUTUAL_FUNDS,
        identifier_field="isin",
        value_field="nav",
        stored_value_field="nav",
        primary_source=DataSource.AMFI,
        required_fields=("nav", "date", "isin"),
        optional_fields=("schemeCode", "schemeName", "fundHouse", "category", "source"),
        reference_value=_fund_reference_nav,
        build_update=_fund_update,
    ),
    InvestmentType.STOCKS: InvestmentTypeSpec(
        investment_type=InvestmentType.STOCKS,
        identifier_field="symbol",
        value_field="price",
        stored_value_field="currentPrice",
        primary_source=DataSource.YAHOO_FINANCE,
        required_fields=("price", "symbol"),
        optional_fields=(
            "timestamp", "isRealTime", "tradingStatus", "volume", "exchange", "currency",
            "change", "changePercent", "open", "high", "low", "previousClose", "source",
        ),
        reference_value=_stock_reference_price,
        build_update=_stock_update,
    ),
    InvestmentType.EPF: InvestmentTypeSpec(
        investment_type=InvestmentType.EPF,
        identifier_field="uan",
        value_field="totalBalance",
        stored_value_field="totalBalance",
        primary_source=DataSource.EPFO,
        required_fields=("employeeContribution", "employerContribution", "totalBalance"),
        optional_fields=(
            "uan", "date", "interestRate", "memberId", "establishmentId",
            "balanceIncrease", "lastUpdated", "source",
        ),
        reference_value=_epf_reference_balance,
        build_update=_epf_update,
    ),
}


def get_investment_spec(investment_type: InvestmentType | str) -> InvestmentTypeSpec:
    """
    Look up metadata for an investment type.

    Raises:
        ConfigurationError: If the type is unknown or not synced
    """
    try:
        key = InvestmentType(investment_type)
    except ValueError:
        raise ConfigurationError(f"Unknown investment type: {investment_type}")

    spec = INVESTMENT_SPECS.get(key)
    if spec is None:
        raise ConfigurationError(f"Unsupported investment type for sync: {key.value}")
    return spec
