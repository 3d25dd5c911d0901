"""RedStone signed price packages — fetching and calldata payload serialization."""
from __future__ import annotations

import base64
import logging
import ssl
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import aiohttp
import certifi

from ..config import OracleConfig
from ..errors import OraclePayloadError
from ..units import to_bytes32

logger = logging.getLogger(__name__)

REDSTONE_MARKER = bytes.fromhex("000002ed57011e0000")
DATA_POINT_VALUE_BYTE_SIZE = 32
DATA_POINT_DECIMALS = 8
SIGNATURE_BYTE_SIZE = 65


def _serialize_value(value: Any) -> bytes:
    if isinstance(value, str) and not _is_number(value):
        # bytes values travel base64-encoded
        raw = base64.b64decode(value)
        return raw.rjust(DATA_POINT_VALUE_BYTE_SIZE, b"\x00")
    scaled = (Decimal(str(value)).scaleb(DATA_POINT_DECIMALS)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return int(scaled).to_bytes(DATA_POINT_VALUE_BYTE_SIZE, "big")


def _is_number(text: str) -> bool:
    try:
        Decimal(text)
    except ArithmeticError:
        return False
    return True


def serialize_data_package(package: dict[str, Any]) -> bytes:
    """One signed data package: data points, timestamp, sizes, signature."""
    points = sorted(
        (
            (to_bytes32(dp["dataFeedId"]), _serialize_value(dp["value"]))
            for dp in package.get("dataPoints", [])
        ),
        key=lambda p: p[0],
    )
    if not points:
        raise OraclePayloadError("Data package has no data points")

    signature = base64.b64decode(package.get("signature", ""))
    if len(signature) != SIGNATURE_BYTE_SIZE:
        raise OraclePayloadError(
            f"Invalid signature length {len(signature)} for package {package.get('dataFeedId')}"
        )

    body = b"".join(feed_id + value for feed_id, value in points)
    body += int(package["timestampMilliseconds"]).to_bytes(6, "big")
    body += DATA_POINT_VALUE_BYTE_SIZE.to_bytes(4, "big")
    body += len(points).to_bytes(3, "big")
    return body + signature


def serialize_payload(packages: list[dict[str, Any]], unsigned_metadata: str = "") -> bytes:
    """Concatenate signed packages into the payload appended to calldata."""
    metadata = unsigned_metadata.encode("utf-8")
    return (
        b"".join(serialize_data_package(p) for p in packages)
        + len(packages).to_bytes(2, "big")
        + metadata
        + len(metadata).to_bytes(3, "big")
        + REDSTONE_MARKER
    )


def select_packages(
    response: dict[str, list[dict[str, Any]]],
    symbols: list[str] | None,
    unique_signers_count: int,
) -> list[dict[str, Any]]:
    """Pick the newest package per signer for ``symbols`` (all feeds when None).

    Raises ``OraclePayloadError`` when a requested symbol is signed by fewer
    than ``unique_signers_count`` distinct signers.
    """
    selected: list[dict[str, Any]] = []
    for feed_id in symbols if symbols is not None else list(response):
        newest: dict[str, dict[str, Any]] = {}
        for package in sorted(
            response.get(feed_id, []),
            key=lambda p: int(p.get("timestampMilliseconds", 0)),
            reverse=True,
        ):
            newest.setdefault(package.get("signerAddress"), package)
        chosen = list(newest.values())[:unique_signers_count]
        if symbols is not None and len(chosen) < unique_signers_count:
            raise OraclePayloadError(
                f"Only {len(chosen)} signer(s) for {feed_id}, need {unique_signers_count}"
            )
        selected.extend(chosen)
    return selected


class RedstoneOracle:
    """Fetch signed price packages from RedStone gateways."""

    def __init__(self, config: OracleConfig) -> None:
        self.gateway_urls = list(config.gateway_urls)
        self.data_service_id = config.data_service_id
        self.unique_signers_count = config.unique_signers_count
        self.unsigned_metadata = config.unsigned_metadata
        self.timeout = config.timeout

    async def fetch_data_packages(self) -> dict[str, list[dict[str, Any]]]:
        """Latest packages keyed by data feed id, trying each gateway in turn."""
        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for gateway in self.gateway_urls:
            url = f"{gateway.rstrip('/')}/data-packages/latest/{self.data_service_id}"
            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.get(
                        url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                    ) as response:
                        if response.status != 200:
                            raise OraclePayloadError(
                                f"Gateway {gateway} returned HTTP {response.status}"
                            )
                        data = await response.json()
                        logger.debug("Fetched %d feeds from %s", len(data), gateway)
                        return data
            except Exception as e:
                last_error = e
                logger.warning("RedStone gateway %s failed: %s", gateway, e)
                continue

        raise OraclePayloadError(f"All oracle gateways failed. Last error: {last_error}")

    async def fetch_payload(self, symbols: list[str] | None = None) -> bytes:
        """Signed payload covering ``symbols`` (every published feed when None)."""
        response = await self.fetch_data_packages()
        packages = select_packages(response, symbols, self.unique_signers_count)
        if not packages:
            raise OraclePayloadError("No signed data packages available")
        payload = serialize_payload(packages, self.unsigned_metadata)
        logger.info(
            "Oracle payload: %d packages, %d bytes", len(packages), len(payload)
        )
        return payload
