"""
HTTP client for the NHTSA vPIC batch VIN decoder.

One POST carries up to 50 semicolon-separated (partial) VINs; the response
holds one result per submitted VIN, in submission order.
"""
from collections.abc import Sequence
from typing import Any, Optional

import requests
import structlog

from vehicle_reconciliation.core.exceptions import DecoderTransportError

logger = structlog.get_logger(__name__)


class VpicClient:
    """Thin transport wrapper around ``DecodeVINValuesBatch``"""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: int = 30,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        if user_agent:
            self.session.headers.update({"User-Agent": user_agent})
        self.logger = logger.bind(component="vpic_client")

    def decode_batch(self, queries: Sequence[str]) -> list[dict[str, Any]]:
        """
        Decode one batch of VIN queries.

        Args:
            queries: Partial VINs in vPIC syntax (``*`` as wildcard)

        Returns:
            The ``Results`` entries, in the same order as ``queries``

        Raises:
            DecoderTransportError: No usable response was received
        """
        payload = {"format": "json", "data": ";".join(queries)}

        try:
            response = self.session.post(
                self.base_url, data=payload, timeout=self.timeout_seconds
            )
            response.raise_for_status()
        except requests.RequestException as e:
            self.logger.error(
                "vPIC request failed", error=str(e), batch_size=len(queries)
            )
            raise DecoderTransportError(
                f"vPIC request failed: {e}", original_exception=e
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise DecoderTransportError(
                "vPIC returned a body that is not JSON", original_exception=e
            ) from e

        if not isinstance(body, dict) or not isinstance(body.get("Results"), list):
            raise DecoderTransportError("vPIC response has no Results array")

        results = body["Results"]
        if len(results) != len(queries):
            self.logger.warning(
                "vPIC result count differs from query count",
                queries=len(queries),
                results=len(results),
            )
        return results
