"""
Third-party Postcode Detail Lookup

Proxies a postcode to an external detail API and returns its JSON body
unchanged. Any network, HTTP or decoding failure is reported as a single
UpstreamLookupError so the API can answer with a generic upstream failure.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from config_manager import LookupConfig
from text_utils import sanitize_for_logging

logger = logging.getLogger(__name__)


class UpstreamLookupError(Exception):
    """Raised when the external detail API cannot be used"""

    def __init__(self, message: str = "Error fetching data", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class PostcodeLookupClient:
    """Thin client for the external postcode detail API"""

    def __init__(self, config: LookupConfig, session: Optional[requests.Session] = None):
        """Initialize the lookup client

        Args:
            config: Lookup section of the service configuration
            session: Optional requests session (shared connection pool)
        """
        self.config = config
        self.session = session or requests.Session()

    def build_url(self, postcode: str) -> str:
        """Build the detail URL: {base_url}{postcode}?output={format}"""
        return f"{self.config.base_url}{quote(postcode.strip(), safe='')}"

    def fetch_details(self, postcode: str) -> Any:
        """Fetch details for a postcode

        Args:
            postcode: Postcode as typed by the caller

        Returns:
            Decoded JSON body of the upstream response

        Raises:
            UpstreamLookupError: If the API is not configured or the call fails
        """
        if not self.config.base_url:
            raise UpstreamLookupError("Detail lookup is not configured")

        url = self.build_url(postcode)
        logger.info(f"Fetching postcode details for '{sanitize_for_logging(postcode, 20)}'")

        try:
            response = self.session.get(
                url,
                params={"output": self.config.output},
                timeout=self.config.timeout_seconds
            )
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"Detail lookup failed with HTTP {status}")
            raise UpstreamLookupError(status_code=status) from e
        except requests.RequestException as e:
            logger.error(f"Detail lookup failed: {e}")
            raise UpstreamLookupError() from e
        except ValueError as e:
            logger.error(f"Detail lookup returned invalid JSON: {e}")
            raise UpstreamLookupError() from e
