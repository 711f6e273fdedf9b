"""Column allow-list and known column-name corrections for the warehouse tables."""

from typing import Dict, Tuple

VALID_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "pub_data": (
        "date", "pic", "pid", "pubname", "mid", "medianame",
        "zid", "zonename", "rev", "profit", "paid", "req",
        "request_CPM", "month", "year",
    ),
    "updated_product_name": (
        "pid", "pubname", "mid", "medianame", "zid", "zonename",
        "H5", "product",
    ),
}

# Table alias used in generated SQL
TABLE_ALIASES: Dict[str, str] = {
    "p": "pub_data",
    "u": "updated_product_name",
}

COLUMN_NAME_FIXES: Dict[str, str] = {
    # Common typos
    "mname": "medianame",
    "pname": "pubname",
    "zname": "zonename",
    "revenue": "rev",
    "impressions": "req",
    "requests": "req",
    "mtype": "product",
    "media_name": "medianame",
    "pub_name": "pubname",
    "zone_name": "zonename",
    "publisher": "pubname",
    "media": "medianame",
    "zone": "zonename",
    # Columns that do not exist
    "team": "pic",
    "quarter": "month",
    "total_revenue": "rev",
    "total_rev": "rev",
    "total_profit": "profit",
}


def all_valid_columns() -> frozenset:
    """Union of the allowed columns of every table."""
    return frozenset(c for columns in VALID_COLUMNS.values() for c in columns)
