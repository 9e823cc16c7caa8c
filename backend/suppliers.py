"""
Supplier portal configuration.

Each supplier is driven by a table of URLs and CSS selectors. The scraper
dispatches on `search_method`:
- navigation: browse sidebar links collection -> pattern -> color
- search: type the pattern into the storefront search box
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


SEARCH_NAVIGATION = "navigation"
SEARCH_SITE = "search"


@dataclass(frozen=True)
class SupplierConfig:
    """URLs, credentials env names and selectors for one supplier portal."""
    key: str
    name: str
    sheet_names: Tuple[str, ...]
    login_url: str
    start_url: str
    username_field: str
    password_field: str
    login_button: str
    username_env: str
    password_env: str
    search_method: str
    selectors: Dict[str, str] = field(default_factory=dict)
    post_login_link: Optional[str] = None
    post_login_wait: Optional[str] = None
    wait_until: str = "networkidle"

    def selector(self, name: str) -> str:
        try:
            return self.selectors[name]
        except KeyError:
            raise KeyError(f"Supplier '{self.key}' has no selector '{name}'") from None


SUPPLIER_CONFIGS: Dict[str, SupplierConfig] = {
    "unique": SupplierConfig(
        key="unique",
        name="Unique Fine Fabrics",
        sheet_names=("unique",),
        login_url="https://uniquefinefabrics.mi-amigo.net/amigo/Account/Login.aspx?Serial=20001&Company=10",
        start_url="https://uniquefinefabrics.mi-amigo.net/amigo/?Path=Home/Fabric%20Collections",
        username_field="#MainContent_Login_UserName",
        password_field="#MainContent_Login_Password",
        login_button="#MainContent_Login_LoginButton",
        username_env="UNIQUE_USERNAME",
        password_env="UNIQUE_PASSWORD",
        search_method=SEARCH_NAVIGATION,
        post_login_link='a.home-grid-item-button[href*="Fabric Collections"]',
        post_login_wait=".home-grid-item-button",
        selectors={
            "sidebar": "#MainContent_CategoryMenu, .category-menu",
            "sidebar_links": "#MainContent_CategoryMenu a, .category-menu a",
            "patterns": ".pattern-item, .fabric-pattern",
            "pagination": ".pager, .pagination",
            "eta_label": "#MainContent_FormView_Product_ETALabel",
        },
    ),
    "alendel": SupplierConfig(
        key="alendel",
        name="Alendel",
        sheet_names=("alendel",),
        login_url="https://www.alendel.com/login?returnUrl=%2F",
        start_url="https://www.alendel.com/",
        username_field="#Email",
        password_field="#Password",
        login_button='button[type="submit"]',
        username_env="ALENDEL_EMAIL",
        password_env="ALENDEL_PASSWORD",
        search_method=SEARCH_SITE,
        wait_until="domcontentloaded",
        post_login_wait="#small-searchterms",
        selectors={
            "search_box": "#small-searchterms",
            "page_size": "#products-pagesize",
            "login_errors": ".text-danger, .alert-danger, .message-error, .validation-summary-errors",
            "result_item": ".item-box",
            "result_sku": ".sku",
            "result_title": ".product-title",
            "next_page": ".pager .next-page a",
            "stock": ".stock .value, .availability .stock",
        },
    ),
}


def get_supplier_config(key: str) -> SupplierConfig:
    """Look up a supplier config by key (case-insensitive)."""
    config = SUPPLIER_CONFIGS.get(key.strip().lower())
    if config is None:
        raise KeyError(
            f"Supplier '{key}' not configured. Valid keys: {list(SUPPLIER_CONFIGS.keys())}"
        )
    return config


def supplier_for_sheet_value(value: str) -> Optional[str]:
    """Map a Supplier column cell to a configured supplier key, or None."""
    normalized = (value or "").strip().lower()
    if not normalized:
        return None
    for key, config in SUPPLIER_CONFIGS.items():
        if normalized in config.sheet_names:
            return key
    return None
