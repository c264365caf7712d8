"""
Key reconciliation: make sure the local keyring holds the public key that
belongs to the hardware token's private key.

Each fingerprint moves through an explicit state machine::

    unknown -> checking -> trusted | missing
    missing -> verifying -> trusted | missing

An import method only reaches ``verifying`` when it produced key material and
the keyring accepted it; the engine then re-checks the keyring before it
reports the import as a success.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

import httpx

from securemail.clients.gnupg import KeyringError
from securemail.clients.keyserver import ARMOR_HEADER, KeyserverLookupError
from securemail.core.exceptions import (
    DetectError,
    MethodFailedError,
    TokenNotPresentError,
    TransientDriverError,
    VerificationFailedError,
)
from securemail.models.hardware import (
    DEFAULT_METHOD_ORDER,
    HardwareTokenIdentity,
    KeyDiagnosis,
    KeyState,
    ReconciliationMethod,
    ReconciliationOutcome,
    ReconciliationReport,
    ReconciliationResult,
    normalize_fingerprint,
)
from securemail.utils.http import RetryConfig, call_with_retry, request_with_retry

logger = logging.getLogger(__name__)

# Returns the chosen key file, or None when the user dismissed the dialog.
FilePicker = Callable[[str], Awaitable[Optional[Path]]]

_TRANSITIONS: Dict[KeyState, frozenset] = {
    KeyState.UNKNOWN: frozenset({KeyState.CHECKING}),
    KeyState.CHECKING: frozenset({KeyState.TRUSTED, KeyState.MISSING}),
    KeyState.MISSING: frozenset({KeyState.VERIFYING, KeyState.CHECKING}),
    KeyState.VERIFYING: frozenset({KeyState.TRUSTED, KeyState.MISSING}),
    KeyState.TRUSTED: frozenset({KeyState.CHECKING}),
}


class Keyring(Protocol):
    async def has_key(self, fingerprint: str) -> bool: ...

    async def import_key(self, key_data: bytes) -> None: ...


class KeySource(Protocol):
    async def detect(self) -> bool: ...

    async def read_identity(self) -> HardwareTokenIdentity: ...

    async def export_public_key(self, fingerprint: str) -> bytes: ...

    async def read_public_key_url(self) -> Optional[str]: ...


class KeyLookup(Protocol):
    async def fetch_key(self, fingerprint: str) -> Optional[bytes]: ...


class _NotApplicable(Exception):
    """The method cannot run in the current situation; a normal outcome."""


class _Canceled(Exception):
    """The user dismissed the method's dialog; a normal outcome."""


@dataclass
class _KeyProgress:
    state: KeyState = KeyState.UNKNOWN
    outcomes: List[ReconciliationOutcome] = field(default_factory=list)


class KeyReconciliationEngine:
    """Reconcile hardware token fingerprints against the local keyring."""

    def __init__(
        self,
        keyring: Keyring,
        driver: KeySource,
        keyserver: KeyLookup,
        *,
        file_picker: FilePicker | None = None,
        card_url_retries: int = 2,
        http_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._keyring = keyring
        self._driver = driver
        self._keyserver = keyserver
        self._file_picker = file_picker
        self._card_url_retry = RetryConfig(
            attempts=card_url_retries + 1, backoff_seconds=0
        )
        self._http_timeout = http_timeout
        self._transport = transport
        self._progress: Dict[str, _KeyProgress] = defaultdict(_KeyProgress)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._methods = {
            ReconciliationMethod.DIRECT_SYNC: self._direct_sync,
            ReconciliationMethod.KEYSERVER: self._keyserver_fetch,
            ReconciliationMethod.FILE: self._file_import,
            ReconciliationMethod.CARD_URL: self._card_url_fetch,
        }

    def state_of(self, fingerprint: str) -> KeyState:
        return self._progress[normalize_fingerprint(fingerprint)].state

    def history(self, fingerprint: str) -> List[ReconciliationOutcome]:
        """Every outcome recorded for ``fingerprint`` so far, oldest first."""
        return list(self._progress[normalize_fingerprint(fingerprint)].outcomes)

    def _transition(self, fingerprint: str, state: KeyState) -> None:
        progress = self._progress[fingerprint]
        if state not in _TRANSITIONS[progress.state]:
            raise RuntimeError(
                f"Illegal key state change {progress.state.value} -> {state.value}"
            )
        logger.debug("Key %s: %s -> %s", fingerprint, progress.state.value, state.value)
        progress.state = state

    def _record(self, outcome: ReconciliationOutcome) -> ReconciliationOutcome:
        self._progress[outcome.fingerprint].outcomes.append(outcome)
        logger.info(
            "Key %s via %s: %s%s",
            outcome.fingerprint,
            outcome.method.value if outcome.method else "local keyring",
            outcome.result.value,
            f" ({outcome.reason})" if outcome.reason else "",
        )
        return outcome

    async def check(self, fingerprint: str) -> KeyState:
        """Look the fingerprint up in the local keyring."""
        fingerprint = normalize_fingerprint(fingerprint)
        async with self._locks[fingerprint]:
            return await self._check(fingerprint)

    async def _check(self, fingerprint: str) -> KeyState:
        self._transition(fingerprint, KeyState.CHECKING)
        try:
            present = await self._keyring.has_key(fingerprint)
        except KeyringError:
            self._transition(fingerprint, KeyState.MISSING)
            raise
        if present:
            self._transition(fingerprint, KeyState.TRUSTED)
            self._record(
                ReconciliationOutcome(
                    fingerprint=fingerprint, result=ReconciliationResult.FOUND
                )
            )
        else:
            self._transition(fingerprint, KeyState.MISSING)
        return self._progress[fingerprint].state

    async def attempt(
        self, fingerprint: str, method: ReconciliationMethod
    ) -> ReconciliationOutcome:
        """Run one import method chosen by the user."""
        fingerprint = normalize_fingerprint(fingerprint)
        async with self._locks[fingerprint]:
            if self._progress[fingerprint].state is not KeyState.MISSING:
                if await self._check(fingerprint) is KeyState.TRUSTED:
                    return self._progress[fingerprint].outcomes[-1]
            return await self._attempt(fingerprint, method)

    async def reconcile(
        self,
        fingerprint: str,
        methods: Sequence[ReconciliationMethod] = DEFAULT_METHOD_ORDER,
    ) -> ReconciliationReport:
        """
        Check the keyring, then try each method in order until one succeeds.

        A method is tried at most once per call. The report lists only the
        outcomes of this call; ``history`` keeps earlier ones.
        """
        fingerprint = normalize_fingerprint(fingerprint)
        outcomes: List[ReconciliationOutcome] = []
        async with self._locks[fingerprint]:
            state = await self._check(fingerprint)
            if state is KeyState.TRUSTED:
                outcomes.append(self._progress[fingerprint].outcomes[-1])
            else:
                for method in dict.fromkeys(methods):
                    outcome = await self._attempt(fingerprint, method)
                    outcomes.append(outcome)
                    if outcome.succeeded:
                        break
            return ReconciliationReport(
                fingerprint=fingerprint,
                state=self._progress[fingerprint].state,
                outcomes=outcomes,
            )

    async def _attempt(
        self, fingerprint: str, method: ReconciliationMethod
    ) -> ReconciliationOutcome:
        try:
            key_data = await self._methods[method](fingerprint)
            await self._import_and_verify(fingerprint, method, key_data)
        except _NotApplicable as exc:
            return self._record(
                ReconciliationOutcome(
                    fingerprint=fingerprint,
                    method=method,
                    result=ReconciliationResult.NOT_APPLICABLE,
                    reason=str(exc),
                )
            )
        except _Canceled:
            return self._record(
                ReconciliationOutcome(
                    fingerprint=fingerprint,
                    method=method,
                    result=ReconciliationResult.CANCELED,
                )
            )
        except VerificationFailedError as exc:
            return self._record(
                ReconciliationOutcome(
                    fingerprint=fingerprint,
                    method=method,
                    result=ReconciliationResult.FAILED,
                    reason=str(exc),
                    verification_failed=True,
                )
            )
        except MethodFailedError as exc:
            return self._record(
                ReconciliationOutcome(
                    fingerprint=fingerprint,
                    method=method,
                    result=ReconciliationResult.FAILED,
                    reason=exc.reason,
                )
            )

        return self._record(
            ReconciliationOutcome(
                fingerprint=fingerprint,
                method=method,
                result=ReconciliationResult.IMPORTED,
            )
        )

    async def _import_and_verify(
        self, fingerprint: str, method: ReconciliationMethod, key_data: bytes
    ) -> None:
        try:
            await self._keyring.import_key(key_data)
        except KeyringError as exc:
            raise MethodFailedError(method.value, f"Keyring import failed: {exc}") from exc

        self._transition(fingerprint, KeyState.VERIFYING)
        try:
            verified = await self._keyring.has_key(fingerprint)
        except KeyringError as exc:
            logger.warning("Keyring re-check for %s failed: %s", fingerprint, exc)
            verified = False
        if not verified:
            self._transition(fingerprint, KeyState.MISSING)
            raise VerificationFailedError(fingerprint)
        self._transition(fingerprint, KeyState.TRUSTED)

    async def _direct_sync(self, fingerprint: str) -> bytes:
        method = ReconciliationMethod.DIRECT_SYNC.value
        try:
            return await self._driver.export_public_key(fingerprint)
        except TokenNotPresentError as exc:
            raise _NotApplicable("No hardware token connected.") from exc
        except DetectError as exc:
            raise MethodFailedError(method, str(exc)) from exc

    async def _keyserver_fetch(self, fingerprint: str) -> bytes:
        method = ReconciliationMethod.KEYSERVER.value
        try:
            key_data = await self._keyserver.fetch_key(fingerprint)
        except KeyserverLookupError as exc:
            raise MethodFailedError(method, f"No keyserver reachable: {exc}") from exc
        if key_data is None:
            raise MethodFailedError(method, "Key not found on any keyserver.")
        return key_data

    async def _file_import(self, fingerprint: str) -> bytes:
        method = ReconciliationMethod.FILE.value
        if self._file_picker is None:
            raise _NotApplicable("No key file dialog available.")
        path = await self._file_picker(fingerprint)
        if path is None:
            raise _Canceled()
        try:
            with Path(path).open("rb") as handle:
                key_data = handle.read()
        except OSError as exc:
            raise MethodFailedError(method, f"Could not read {path}: {exc}") from exc
        if ARMOR_HEADER.encode("ascii") not in key_data:
            raise MethodFailedError(
                method, "The selected file is not an ASCII-armored public key."
            )
        return key_data

    async def _card_url_fetch(self, fingerprint: str) -> bytes:
        method = ReconciliationMethod.CARD_URL.value
        try:
            url = await call_with_retry(
                self._driver.read_public_key_url,
                retry_on=(TransientDriverError,),
                retry_config=self._card_url_retry,
            )
        except DetectError as exc:
            raise MethodFailedError(method, f"Card URL lookup failed: {exc}") from exc
        if not url:
            raise _NotApplicable("The token does not advertise a public key URL.")

        try:
            async with httpx.AsyncClient(
                timeout=self._http_timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await request_with_retry(
                    client.get, url, retry_config=self._card_url_retry
                )
        except httpx.HTTPError as exc:
            raise MethodFailedError(method, f"Fetching {url} failed: {exc}") from exc
        if ARMOR_HEADER not in response.text:
            raise MethodFailedError(method, f"{url} did not return a public key block.")
        return response.content

    async def diagnose(self) -> KeyDiagnosis:
        """Report whether a token is connected and its keys are in the keyring."""
        try:
            if not await self._driver.detect():
                return KeyDiagnosis(token_detected=False, message="No hardware token detected")
            identity = await self._driver.read_identity()
        except TokenNotPresentError:
            return KeyDiagnosis(token_detected=False, message="No hardware token detected")

        fingerprints = identity.key_fingerprints
        signature_present = bool(
            fingerprints.signature and await self._keyring.has_key(fingerprints.signature)
        )
        decryption_present = bool(
            fingerprints.decryption and await self._keyring.has_key(fingerprints.decryption)
        )
        healthy = signature_present and decryption_present
        return KeyDiagnosis(
            token_detected=True,
            signature_key_present=signature_present,
            decryption_key_present=decryption_present,
            message=(
                "Hardware token is fully functional"
                if healthy
                else "Hardware token detected but not fully configured"
            ),
        )


__all__ = ["FilePicker", "KeyReconciliationEngine"]
