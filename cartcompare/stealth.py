"""
Launch and context options that keep headless Chromium from looking automated.

Retail sites serve degraded pages (or block outright) when they spot
``navigator.webdriver``; these options make the comparison browser look like a
regular desktop Chrome in the configured market.
"""

from typing import Any, Dict

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {
    get: () => undefined
});

window.chrome = {
    runtime: {},
    loadTimes: function() {},
    csi: function() {},
    app: {}
};

Object.defineProperty(navigator, 'plugins', {
    get: () => [1, 2, 3, 4, 5]
});

Object.defineProperty(navigator, 'platform', {
    get: () => 'Win32'
});

Object.defineProperty(navigator, 'hardwareConcurrency', {
    get: () => 8
});
"""

# Browser launch arguments
STEALTH_ARGS = [
    # Essential for Docker
    '--no-sandbox',
    '--disable-setuid-sandbox',

    # Disable automation flags
    '--disable-blink-features=AutomationControlled',

    # Memory and performance
    '--disable-dev-shm-usage',
    '--disable-infobars',
    '--disable-background-timer-throttling',
    '--disable-backgrounding-occluded-windows',
    '--disable-renderer-backgrounding',
]

STEALTH_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


async def apply_stealth(page) -> None:
    """
    Apply stealth script to a Playwright page.

    Args:
        page: Playwright page object
    """
    await page.add_init_script(STEALTH_SCRIPT)


def get_stealth_context_options(
    locale: str = "en-ZA",
    timezone_id: str = "Africa/Johannesburg",
) -> Dict[str, Any]:
    """
    Get browser context options for the target market.

    Args:
        locale: Browser locale, also used for Accept-Language
        timezone_id: IANA timezone reported to pages

    Returns:
        Dictionary of context options
    """
    language = locale.split("-")[0]
    return {
        'user_agent': STEALTH_USER_AGENT,
        'viewport': {'width': 1920, 'height': 1080},
        'locale': locale,
        'timezone_id': timezone_id,
        'color_scheme': 'light',
        'extra_http_headers': {
            'Accept-Language': f'{locale},{language};q=0.9',
            'Upgrade-Insecure-Requests': '1',
        },
        'java_script_enabled': True,
        'is_mobile': False,
    }
