"""Public keyserver lookups over HKP(S)."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from securemail.models.hardware import normalize_fingerprint

logger = logging.getLogger(__name__)

ARMOR_HEADER = "-----BEGIN PGP PUBLIC KEY BLOCK-----"


class KeyserverLookupError(Exception):
    """Raised when no keyserver could be queried at all."""


class KeyserverClient:
    """Fetch armored public keys by fingerprint from a list of keyservers."""

    def __init__(
        self,
        hosts: Sequence[str],
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not hosts:
            raise ValueError("At least one keyserver host is required.")
        self._hosts = tuple(hosts)
        self._timeout = timeout_seconds
        self._transport = transport

    @staticmethod
    def lookup_url(host: str, fingerprint: str) -> str:
        return (
            f"https://{host}/pks/lookup?op=get&options=mr"
            f"&search=0x{normalize_fingerprint(fingerprint)}"
        )

    async def fetch_key(self, fingerprint: str) -> Optional[bytes]:
        """
        Return the armored key from the first keyserver that has it.

        ``None`` means every reachable keyserver answered "not found". When
        no keyserver could be reached at all ``KeyserverLookupError`` is raised.
        """
        errors: list[str] = []
        reachable = False

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            for host in self._hosts:
                url = self.lookup_url(host, fingerprint)
                try:
                    response = await client.get(url)
                except httpx.HTTPError as exc:
                    logger.warning("Keyserver %s unreachable: %s", host, exc)
                    errors.append(f"{host}: {exc}")
                    continue

                reachable = True
                if response.status_code == httpx.codes.NOT_FOUND:
                    logger.info("Key %s not found on %s", fingerprint, host)
                    continue
                if response.status_code != httpx.codes.OK:
                    logger.warning(
                        "Keyserver %s answered HTTP %s", host, response.status_code
                    )
                    errors.append(f"{host}: HTTP {response.status_code}")
                    continue
                if ARMOR_HEADER not in response.text:
                    logger.warning("Keyserver %s returned no key block", host)
                    continue

                logger.info("Fetched key %s from %s", fingerprint, host)
                return response.content

        if not reachable:
            raise KeyserverLookupError("; ".join(errors) or "no keyserver reachable")
        return None


__all__ = ["ARMOR_HEADER", "KeyserverClient", "KeyserverLookupError"]
