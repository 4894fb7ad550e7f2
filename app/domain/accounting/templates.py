"""Industry Chart of Accounts templates.

Each template lists accounts parent-before-child. Control accounts that the
posting templates rely on (cash, receivable, payable) are system-flagged.
"""

from typing import Any, Dict, List

from app.domain.accounting.errors import NotFoundError

_BASE: List[Dict[str, Any]] = [
    {"code": "1000", "name": "Assets", "type": "ASSET", "is_system": True},
    {"code": "1100", "name": "Cash", "type": "ASSET", "parent_code": "1000", "is_cash": True, "is_system": True},
    {"code": "1110", "name": "Bank", "type": "ASSET", "parent_code": "1000", "is_cash": True},
    {"code": "1200", "name": "Accounts Receivable", "type": "ASSET", "parent_code": "1000", "is_system": True},
    {"code": "2000", "name": "Liabilities", "type": "LIABILITY", "is_system": True},
    {"code": "2100", "name": "Accounts Payable", "type": "LIABILITY", "parent_code": "2000", "is_system": True},
    {"code": "2200", "name": "Tax Payable", "type": "LIABILITY", "parent_code": "2000"},
    {"code": "3000", "name": "Equity", "type": "EQUITY", "is_system": True},
    {"code": "3100", "name": "Owner's Capital", "type": "EQUITY", "parent_code": "3000"},
    {"code": "3200", "name": "Retained Earnings", "type": "EQUITY", "parent_code": "3000", "is_system": True},
    {"code": "4000", "name": "Income", "type": "INCOME", "is_system": True},
    {"code": "5000", "name": "Expenses", "type": "EXPENSE", "is_system": True},
]

_INDUSTRY_ACCOUNTS: Dict[str, List[Dict[str, Any]]] = {
    "general": [
        {"code": "4100", "name": "Sales", "type": "INCOME", "parent_code": "4000"},
        {"code": "5100", "name": "General Expenses", "type": "EXPENSE", "parent_code": "5000"},
    ],
    "retail": [
        {"code": "1300", "name": "Inventory", "type": "ASSET", "parent_code": "1000"},
        {"code": "4100", "name": "Product Sales", "type": "INCOME", "parent_code": "4000"},
        {"code": "4200", "name": "Sales Returns", "type": "INCOME", "parent_code": "4000"},
        {"code": "5100", "name": "Cost of Goods Sold", "type": "EXPENSE", "parent_code": "5000"},
        {"code": "5200", "name": "Rent", "type": "EXPENSE", "parent_code": "5000"},
        {"code": "5300", "name": "Salaries", "type": "EXPENSE", "parent_code": "5000"},
    ],
    "services": [
        {"code": "4100", "name": "Service Revenue", "type": "INCOME", "parent_code": "4000"},
        {"code": "4200", "name": "Consulting Revenue", "type": "INCOME", "parent_code": "4000"},
        {"code": "5100", "name": "Subcontractors", "type": "EXPENSE", "parent_code": "5000"},
        {"code": "5200", "name": "Software Subscriptions", "type": "EXPENSE", "parent_code": "5000"},
        {"code": "5300", "name": "Travel", "type": "EXPENSE", "parent_code": "5000"},
    ],
}


def list_templates() -> List[str]:
    """Names of the available industry templates."""
    return sorted(_INDUSTRY_ACCOUNTS)


def get_template(industry: str) -> List[Dict[str, Any]]:
    """
    Return a fresh copy of an industry template.

    Raises:
        NotFoundError: If the industry is unknown
    """
    key = (industry or "").strip().lower()
    if key not in _INDUSTRY_ACCOUNTS:
        raise NotFoundError(f"No account template for industry '{industry}'", industry=industry)
    return [dict(entry) for entry in _BASE + _INDUSTRY_ACCOUNTS[key]]
