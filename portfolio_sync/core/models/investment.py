"""
Enumerations describing what is synced and from where.
"""

from enum import Enum


class InvestmentType(str, Enum):
    """Investment categories the sync core knows how to refresh."""

    MUTUAL_FUNDS = "mutual_funds"
    STOCKS = "stocks"
    EPF = "epf"
    FIXED_DEPOSITS = "fixed_deposits"


class DataSource(str, Enum):
    """Upstream providers of market and account data."""

    AMFI = "amfi"
    MF_CENTRAL = "mf_central"
    EPFO = "epfo"
    YAHOO_FINANCE = "yahoo_finance"
    NSE = "nse"
    BSE = "bse"
    ALPHA_VANTAGE = "alpha_vantage"


class SyncStatus(str, Enum):
    """Sync state stored against each investment."""

    MANUAL = "manual"
    SYNCED = "synced"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"
    DISABLED = "disabled"
    PENDING = "pending"
