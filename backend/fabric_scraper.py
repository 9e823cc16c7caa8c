"""
Supplier portal scraper (Playwright version)

Logs into supplier portals with a headless Chromium browser, locates a
fabric by collection / pattern / color and extracts its stock status.

Two lookup strategies, chosen by SupplierConfig.search_method:
- navigation: sidebar links collection -> pattern -> "Color: X" product link,
  following postback pagination (Unique Fine Fabrics)
- search: storefront search box, result grid parsed with BeautifulSoup,
  following pager links (Alendel)
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

import config
from sheets_service import FabricRecord
from suppliers import SEARCH_NAVIGATION, SEARCH_SITE, SupplierConfig


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_TIMEOUT = 30000     # ms, Playwright default for actions/navigation
SELECTOR_TIMEOUT = 10000    # ms, waiting for login form / sidebar
PAGER_TIMEOUT = 15000       # ms, waiting for postback pagination to re-render
MAX_COLOR_PAGES = 10        # Safety limit for color pagination
MAX_SEARCH_PAGES = 10       # Safety limit for search result pagination

USER_AGENT = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36')

BROWSER_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-accelerated-2d-canvas',
    '--no-first-run',
    '--no-zygote',
    '--disable-gpu',
]

# Backorder phrases checked in page text when no ETA label is present.
# Order matters: the first phrase found is reported.
BACKORDER_PHRASES = [
    'Please Call Customer Service',
    'Out of Stock',
    'Backorder',
]

COLOR_LINK_PREFIX = 'Color:'
NEXT_PAGE_LABELS = ('>', '&gt;')

ERROR_TIMEOUT = "timeout"
ERROR_NAVIGATION = "navigation"


# =============================================================================
# Result Types
# =============================================================================

class StockStatus(Enum):
    """Outcome of looking up one fabric."""
    AVAILABLE = "available"
    BACKORDER = "backorder"
    NOT_FOUND = "not_found"


@dataclass
class FabricResult:
    """Stock status plus the ETA text shown by the supplier (backorder only)."""
    status: StockStatus
    eta: Optional[str] = None

    @classmethod
    def from_eta(cls, eta: Optional[str]) -> 'FabricResult':
        if eta:
            return cls(StockStatus.BACKORDER, eta)
        return cls(StockStatus.AVAILABLE)

    @classmethod
    def not_found(cls) -> 'FabricResult':
        return cls(StockStatus.NOT_FOUND)


class LoginError(Exception):
    """Supplier login failed; fatal for that supplier's batch."""


# =============================================================================
# Text Matching Helpers
# =============================================================================

def find_text_match(texts: List[str], term: str) -> Optional[int]:
    """Index of the first text containing `term` (case-insensitive), or None."""
    needle = (term or '').strip().lower()
    if not needle:
        return None
    for i, text in enumerate(texts):
        if needle in (text or '').strip().lower():
            return i
    return None


def find_color_link(texts: List[str], color: str) -> Optional[int]:
    """
    Index of the first product link reading "Color: <color>", or None.

    Case-insensitive like the other lookups: sheet values such as "IVORY"
    match a portal link "Color: Ivory".
    """
    color = (color or '').strip()
    if not color:
        return None
    return find_text_match(texts, f"{COLOR_LINK_PREFIX} {color}")


def has_direct_color_links(texts: List[str]) -> bool:
    """Collections like Loft list product colors directly, skipping patterns."""
    return any(COLOR_LINK_PREFIX in (t or '') for t in texts)


def is_next_page_control(value: str, disabled: bool = False) -> bool:
    """Pager submit inputs labelled ">" advance to the next page."""
    return not disabled and (value or '').strip() in NEXT_PAGE_LABELS


def eta_from_body_text(body_text: str) -> Optional[str]:
    """Fallback backorder detection from full page text; None means available."""
    for phrase in BACKORDER_PHRASES:
        if phrase in (body_text or ''):
            return phrase
    return None


def eta_from_stock_text(stock_text: str) -> Optional[str]:
    """
    Interpret a storefront stock label.

    "In stock" means available (None); any other non-empty label is the ETA
    text ("Out of stock", "Available on 03/15", ...). Empty returns "".
    """
    text = ' '.join((stock_text or '').split())
    if not text:
        return ''
    lowered = text.lower()
    if 'in stock' in lowered and 'out of' not in lowered:
        return None
    return text


def classify_error(error: Exception) -> str:
    """Bucket a per-record failure as a timeout or a navigation error."""
    if isinstance(error, PlaywrightTimeoutError) or 'timeout' in str(error).lower():
        return ERROR_TIMEOUT
    return ERROR_NAVIGATION


def parse_search_results(html: str, supplier: SupplierConfig, base_url: str) -> List[Dict[str, str]]:
    """
    Extract product entries from a storefront result grid.

    Returns dicts with sku, title and absolute url for every result item.
    """
    soup = BeautifulSoup(html, 'html.parser')
    results = []
    for item in soup.select(supplier.selector('result_item')):
        sku_el = item.select_one(supplier.selector('result_sku'))
        title_el = item.select_one(supplier.selector('result_title'))
        link = title_el.find('a', href=True) if title_el else None
        if link is None:
            link = item.find('a', href=True)
        results.append({
            'sku': sku_el.get_text(strip=True) if sku_el else '',
            'title': title_el.get_text(strip=True) if title_el else '',
            'url': urljoin(base_url, link['href']) if link else '',
        })
    return results


def find_matching_result(results: List[Dict[str, str]], pattern: str, color: str) -> Optional[Dict[str, str]]:
    """First result whose SKU or title contains the pattern and the color."""
    pattern = (pattern or '').strip().lower()
    color = (color or '').strip().lower()
    if not pattern:
        return None
    for result in results:
        if not result.get('url'):
            continue
        haystack = f"{result.get('sku', '')} {result.get('title', '')}".lower()
        if pattern in haystack and color in haystack:
            return result
    return None


def find_next_page_url(html: str, selector: str, base_url: str) -> Optional[str]:
    """Absolute URL of the pager's next-page link, or None on the last page."""
    soup = BeautifulSoup(html, 'html.parser')
    link = soup.select_one(selector)
    if link is None or not link.get('href'):
        return None
    return urljoin(base_url, link['href'])


def pick_largest_page_size(options: List[List[str]]) -> Optional[str]:
    """Choose the option value with the largest numeric label."""
    best_value, best_size = None, -1
    for value, label in options:
        digits = ''.join(ch for ch in (label or '') if ch.isdigit())
        if digits and int(digits) > best_size:
            best_value, best_size = value, int(digits)
    return best_value


# =============================================================================
# Scraper
# =============================================================================

class FabricScraper:
    """
    One browser tab, driven sequentially through login / search / extract.

    Call initialize() before use and close() when done; close() is safe to
    call more than once and never raises.
    """

    def __init__(self, headless: Optional[bool] = None):
        self.headless = config.is_headless() if headless is None else headless
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None

    def initialize(self) -> None:
        """Launch Chromium and open the working tab."""
        self._playwright = sync_playwright().start()
        self.browser = self._playwright.chromium.launch(headless=self.headless, args=BROWSER_ARGS)
        self.context = self.browser.new_context(
            viewport={'width': 1366, 'height': 768},
            user_agent=USER_AGENT,
            locale='en-US',
        )
        self.page = self.context.new_page()
        self.page.set_default_timeout(DEFAULT_TIMEOUT)
        print("  Fabric scraper initialized", flush=True)

    def close(self) -> None:
        """Close the browser and stop the Playwright driver."""
        if self.browser:
            try:
                self.browser.close()
                print("  Browser closed", flush=True)
            except PlaywrightError as e:
                print(f"  Error closing browser: {e}", flush=True)
        if self._playwright:
            try:
                self._playwright.stop()
            except PlaywrightError as e:
                print(f"  Error stopping Playwright: {e}", flush=True)
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None

    # -------------------------------------------------------------------------
    # Login
    # -------------------------------------------------------------------------

    def login(self, supplier: SupplierConfig) -> None:
        """Authenticate with the supplier portal. Raises LoginError on failure."""
        try:
            username, password = config.get_credentials(supplier.username_env, supplier.password_env)
        except config.ConfigError as e:
            raise LoginError(str(e)) from e

        page = self.page
        try:
            print(f"  Navigating to {supplier.name} login page", flush=True)
            page.goto(supplier.login_url, wait_until=supplier.wait_until)
            page.wait_for_selector(supplier.username_field, timeout=SELECTOR_TIMEOUT)

            page.fill(supplier.username_field, username)
            page.fill(supplier.password_field, password)

            with page.expect_navigation(wait_until=supplier.wait_until):
                page.click(supplier.login_button)

            if supplier.post_login_wait:
                try:
                    page.wait_for_selector(supplier.post_login_wait, timeout=SELECTOR_TIMEOUT)
                except PlaywrightTimeoutError:
                    raise LoginError(self._login_failure_message(supplier)) from None

            if supplier.post_login_link:
                self._open_post_login_link(supplier)
        except LoginError:
            raise
        except PlaywrightError as e:
            raise LoginError(f"Error during {supplier.name} login: {e}") from e

        print(f"  Logged into {supplier.name} portal", flush=True)

    def _login_failure_message(self, supplier: SupplierConfig) -> str:
        message = f"{supplier.name} login did not reach the expected page ({self.page.url})"
        error_selector = supplier.selectors.get('login_errors')
        if error_selector:
            errors = [t.strip() for t in self.page.locator(error_selector).all_inner_texts() if t.strip()]
            if errors:
                message += f": {', '.join(errors)}"
        return message

    def _open_post_login_link(self, supplier: SupplierConfig) -> None:
        link = self.page.locator(supplier.post_login_link).first
        if link.count() == 0:
            raise LoginError(f"Could not find post-login link: {supplier.post_login_link}")
        with self.page.expect_navigation(wait_until=supplier.wait_until):
            link.click()

    def return_to_start_page(self, supplier: SupplierConfig) -> None:
        """Reset the tab to the supplier's start page before the next search."""
        self.page.goto(supplier.start_url, wait_until=supplier.wait_until)

    # -------------------------------------------------------------------------
    # Search dispatch
    # -------------------------------------------------------------------------

    def search_fabric(self, supplier: SupplierConfig, fabric: FabricRecord) -> FabricResult:
        """
        Look up one fabric and return its stock status.

        Lookup errors propagate to the caller; the tab is returned to the
        supplier start page either way.
        """
        print(f"  Searching for fabric: {fabric.collection} - {fabric.pattern} - {fabric.color}", flush=True)

        if supplier.search_method == SEARCH_NAVIGATION:
            search = self._search_by_navigation
        elif supplier.search_method == SEARCH_SITE:
            search = self._search_by_site_search
        else:
            raise ValueError(f"Unknown search method: {supplier.search_method}")

        try:
            return search(supplier, fabric)
        finally:
            self._safe_return_to_start(supplier)

    def _safe_return_to_start(self, supplier: SupplierConfig) -> None:
        try:
            self.return_to_start_page(supplier)
        except PlaywrightError as e:
            print(f"    Error returning to start page: {e}", flush=True)

    # -------------------------------------------------------------------------
    # Navigation search (sidebar browsing)
    # -------------------------------------------------------------------------

    def _search_by_navigation(self, supplier: SupplierConfig, fabric: FabricRecord) -> FabricResult:
        if not self.navigate_to_collection(supplier, fabric.collection):
            print(f"    Collection not found: {fabric.collection}", flush=True)
            return FabricResult.not_found()

        time.sleep(1)

        link_texts = self.page.locator('a').all_inner_texts()
        if has_direct_color_links(link_texts):
            print(f"    Collection has direct product colors, skipping pattern search for {fabric.pattern}", flush=True)
            if not fabric.color:
                print("    No color specified for direct product collection", flush=True)
                return FabricResult.not_found()
            if not self.find_pattern_or_color(supplier, fabric.color):
                print(f"    Color not found: {fabric.color}", flush=True)
                return FabricResult.not_found()
        else:
            if not self.find_pattern_or_color(supplier, fabric.pattern):
                print(f"    Pattern not found: {fabric.pattern}", flush=True)
                return FabricResult.not_found()
            if fabric.color and not self.find_pattern_or_color(supplier, fabric.color):
                print(f"    Color not found: {fabric.color}", flush=True)
                return FabricResult.not_found()

        eta = self.extract_eta(supplier)
        print(f"    ETA info for {fabric.label}: {eta or '(available)'}", flush=True)
        return FabricResult.from_eta(eta)

    def _click_and_wait(self, locator, supplier: SupplierConfig) -> None:
        with self.page.expect_navigation(wait_until=supplier.wait_until):
            locator.click()

    def navigate_to_collection(self, supplier: SupplierConfig, collection: str) -> bool:
        """Open a collection from the sidebar. Returns False if not listed."""
        if supplier.post_login_link:
            link = self.page.locator(supplier.post_login_link).first
            if link.count() > 0:
                self._click_and_wait(link, supplier)

        self.page.wait_for_selector(supplier.selector('sidebar'), timeout=SELECTOR_TIMEOUT)

        links = self.page.locator(supplier.selector('sidebar_links'))
        index = find_text_match(links.all_inner_texts(), collection)
        if index is None:
            return False

        self._click_and_wait(links.nth(index), supplier)
        print(f"    Navigated to collection: {collection}", flush=True)
        return True

    def find_pattern_or_color(self, supplier: SupplierConfig, term: str) -> bool:
        """
        Follow the first link matching `term`.

        Checks sidebar links, then "Color: <term>" product links across up to
        MAX_COLOR_PAGES pages, then the main-content pattern items.
        """
        page = self.page
        if page.locator(supplier.selector('sidebar')).count() == 0:
            print("    Sidebar not found - not in collection page", flush=True)
            return False

        sidebar_links = page.locator(supplier.selector('sidebar_links'))
        index = find_text_match(sidebar_links.all_inner_texts(), term)
        if index is not None:
            self._click_and_wait(sidebar_links.nth(index), supplier)
            print(f"    Found \"{term}\" in sidebar", flush=True)
            return True

        for page_num in range(1, MAX_COLOR_PAGES + 1):
            links = page.locator('a')
            index = find_color_link(links.all_inner_texts(), term)
            if index is not None:
                self._click_and_wait(links.nth(index), supplier)
                print(f"    Found color \"{term}\" on page {page_num}", flush=True)
                return True
            if not self.go_to_next_color_page(supplier):
                break

        items = page.locator(supplier.selector('patterns'))
        index = find_text_match(items.all_inner_texts(), term)
        if index is not None:
            self._click_and_wait(items.nth(index), supplier)
            print(f"    Found \"{term}\" in main content", flush=True)
            return True

        print(f"    \"{term}\" not found in sidebar, links, or main content", flush=True)
        return False

    def go_to_next_color_page(self, supplier: SupplierConfig) -> bool:
        """Click the pager's ">" input and wait for the pager to re-render."""
        page = self.page
        pager_selector = supplier.selector('pagination')
        pager = page.locator(pager_selector).first
        if pager.count() == 0:
            return False

        buttons = pager.locator('input[type="submit"]')
        controls = buttons.evaluate_all("els => els.map(e => [e.value, e.disabled])")
        index = next((i for i, (value, disabled) in enumerate(controls)
                      if is_next_page_control(value, disabled)), None)
        if index is None:
            return False

        old_content = pager.inner_html()
        buttons.nth(index).click()
        try:
            page.wait_for_function(
                """([selector, oldContent]) => {
                    const pager = document.querySelector(selector);
                    return pager && pager.innerHTML !== oldContent;
                }""",
                arg=[pager_selector, old_content],
                timeout=PAGER_TIMEOUT,
            )
        except PlaywrightTimeoutError as e:
            print(f"    Color page navigation failed: {e}", flush=True)
            return False

        time.sleep(2)
        return True

    def extract_eta(self, supplier: SupplierConfig) -> Optional[str]:
        """ETA label text, else a backorder phrase from the page, else None."""
        label = self.page.locator(supplier.selector('eta_label'))
        if label.count() > 0:
            eta_text = label.first.inner_text().strip()
            if eta_text:
                return eta_text
        return eta_from_body_text(self.page.inner_text('body'))

    # -------------------------------------------------------------------------
    # Site search (storefront search box)
    # -------------------------------------------------------------------------

    def _search_by_site_search(self, supplier: SupplierConfig, fabric: FabricRecord) -> FabricResult:
        page = self.page
        search_box = supplier.selector('search_box')
        if page.locator(search_box).count() == 0:
            self.return_to_start_page(supplier)
        page.wait_for_selector(search_box, timeout=SELECTOR_TIMEOUT)

        page.fill(search_box, fabric.pattern)
        with page.expect_navigation(wait_until=supplier.wait_until):
            page.press(search_box, 'Enter')

        self._maximize_page_size(supplier)

        for page_num in range(1, MAX_SEARCH_PAGES + 1):
            html = page.content()
            results = parse_search_results(html, supplier, page.url)
            match = find_matching_result(results, fabric.pattern, fabric.color)
            if match:
                print(f"    Found matching product on page {page_num}: {match['sku'] or match['title']}", flush=True)
                page.goto(match['url'], wait_until=supplier.wait_until)
                eta = self.extract_stock_eta(supplier)
                print(f"    Stock for {fabric.label}: {eta or '(available)'}", flush=True)
                return FabricResult.from_eta(eta)

            next_url = find_next_page_url(html, supplier.selector('next_page'), page.url)
            if not next_url:
                break
            page.goto(next_url, wait_until=supplier.wait_until)

        print(f"    No search result matched {fabric.label}", flush=True)
        return FabricResult.not_found()

    def _maximize_page_size(self, supplier: SupplierConfig) -> None:
        """Show as many results per page as the storefront allows."""
        select = self.page.locator(supplier.selector('page_size'))
        if select.count() == 0:
            return
        options = select.locator('option').evaluate_all(
            "opts => opts.map(o => [o.value, o.textContent.trim()])"
        )
        value = pick_largest_page_size(options)
        if value is None or value == select.input_value():
            return
        try:
            with self.page.expect_navigation(wait_until=supplier.wait_until):
                select.select_option(value)
        except PlaywrightTimeoutError:
            print("    Page size change did not reload results, continuing", flush=True)

    def extract_stock_eta(self, supplier: SupplierConfig) -> Optional[str]:
        """Read the product page stock label; falls back to page text."""
        stock = self.page.locator(supplier.selector('stock'))
        stock_text = stock.first.inner_text() if stock.count() > 0 else ''
        eta = eta_from_stock_text(stock_text)
        if eta == '':
            return eta_from_body_text(self.page.inner_text('body'))
        return eta
