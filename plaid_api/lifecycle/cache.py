"""
Resource Cache Module

Lazily-initialized, configuration-keyed slot for one expensive resource
(a database handle, a structured logger).

Acquire Algorithm:
    1. Slot holds the requested fingerprint -> return cached handle
       (lock-free attribute read, no await on the hot path)
    2. Initialization for the fingerprint already in flight -> await it
    3. Slot empty -> build, publish, return
    4. Slot holds another fingerprint -> drift policy:
         - fail_fast: Conflict outcome, old handle stays in service
         - replace: build, swap the slot, close the old handle if Closeable.
           A build that finishes after a newer request has published is
           discarded and its caller gets the handle in service.

Concurrency:
    In-flight initializations are tracked per fingerprint, so concurrent
    callers for one configuration share a single build (and its failure),
    while different configurations never wait on each other.

Usage:
    cache = ResourceCache("database", build_handle, DriftPolicy.FAIL_FAST)
    outcome = await cache.acquire(fingerprint)
    if isinstance(outcome, Conflict):
        raise outcome.to_error()
    db = outcome.handle
"""

import json
import asyncio
import hashlib
import inspect
import logging
from datetime import datetime
from dataclasses import asdict, dataclass, field, is_dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ..core.config import DriftPolicy
from ..core.database import Closeable
from ..core.errors import ConfigurationConflictError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceFingerprint:
    """
    Identity of the configuration a resource is built from.

    Equality is kind + digest. The build inputs travel along in `spec`
    but take no part in equality or repr, since they carry credentials.

    Attributes:
        kind: Resource kind ("database", "logger")
        digest: SHA-256 of the canonical JSON of every build input
        label: Secret-free description for logs
        spec: Build inputs handed to the cache factory
    """
    kind: str
    digest: str
    label: str = field(default="", compare=False)
    spec: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def derive(cls, kind: str, spec: Any, label: str = "") -> "ResourceFingerprint":
        inputs = asdict(spec) if is_dataclass(spec) else spec
        canonical = json.dumps(inputs, sort_keys=True, default=str)
        digest = hashlib.sha256(f"{kind}:{canonical}".encode()).hexdigest()
        return cls(kind=kind, digest=digest, label=label or digest[:12], spec=spec)


@dataclass(frozen=True)
class CachedResource:
    """
    The single live entry of a cache slot.

    Attributes:
        generation: Order in which the build was requested; a newer
                    generation is never overwritten by an older one
    """
    fingerprint: ResourceFingerprint
    handle: Any
    initialized_at: datetime = field(default_factory=datetime.now)
    generation: int = 0


@dataclass(frozen=True)
class Acquired:
    """Successful acquire."""
    handle: Any
    fingerprint: ResourceFingerprint
    reused: bool = False

    def unwrap(self) -> Any:
        return self.handle


@dataclass(frozen=True)
class Conflict:
    """Drift rejected under fail_fast; the cached handle is untouched."""
    cached: ResourceFingerprint
    requested: ResourceFingerprint

    def to_error(self) -> ConfigurationConflictError:
        return ConfigurationConflictError(
            resource=self.requested.kind,
            cached_label=self.cached.label,
            requested_label=self.requested.label
        )

    def unwrap(self) -> Any:
        raise self.to_error()


AcquireOutcome = Union[Acquired, Conflict]
ResourceFactory = Callable[[ResourceFingerprint], Union[Any, Awaitable[Any]]]


def _consume_exception(task: "asyncio.Future[Any]") -> None:
    # Callers that were cancelled while waiting leave the failure unread
    if not task.cancelled():
        task.exception()


class ResourceCache:
    """
    Process-wide cache slot for one resource kind.

    Attributes:
        kind: Resource kind served by this cache
        drift_policy: Behaviour when the requested fingerprint changes
        initializations: Number of builds started (for health and tests)
    """

    def __init__(
        self,
        kind: str,
        factory: ResourceFactory,
        drift_policy: DriftPolicy = DriftPolicy.REPLACE
    ):
        self.kind = kind
        self.drift_policy = drift_policy
        self.initializations = 0
        self._generation = 0
        self._factory = factory
        self._slot: Optional[CachedResource] = None
        self._pending: Dict[ResourceFingerprint, "asyncio.Future[AcquireOutcome]"] = {}

    @property
    def current(self) -> Optional[CachedResource]:
        return self._slot

    async def acquire(self, fingerprint: ResourceFingerprint) -> AcquireOutcome:
        """
        Return the handle for a fingerprint, building it at most once.

        Raises:
            ValueError: If the fingerprint is for another resource kind
            Exception: Whatever the factory raised; every concurrent
                       caller of the failed build sees the same error
        """
        if fingerprint.kind != self.kind:
            raise ValueError(
                f"Fingerprint kind '{fingerprint.kind}' does not match cache '{self.kind}'"
            )

        slot = self._slot
        if slot is not None and slot.fingerprint == fingerprint:
            return Acquired(slot.handle, fingerprint, reused=True)

        pending = self._pending.get(fingerprint)
        if pending is None:
            if slot is not None and self.drift_policy is DriftPolicy.FAIL_FAST:
                return self._reject(slot.fingerprint, fingerprint)

            self.initializations += 1
            self._generation += 1
            pending = asyncio.ensure_future(
                self._initialize(fingerprint, self._generation)
            )
            pending.add_done_callback(_consume_exception)
            self._pending[fingerprint] = pending

        return await asyncio.shield(pending)

    async def _initialize(
        self,
        fingerprint: ResourceFingerprint,
        generation: int
    ) -> AcquireOutcome:
        try:
            handle = self._factory(fingerprint)
            if inspect.isawaitable(handle):
                handle = await handle
        finally:
            self._pending.pop(fingerprint, None)

        current = self._slot
        if current is None or current.fingerprint == fingerprint:
            self._slot = CachedResource(fingerprint, handle, generation=generation)
            logger.info(f"Initialized {self.kind} resource: {fingerprint.label}")
            return Acquired(handle, fingerprint)

        if self.drift_policy is DriftPolicy.FAIL_FAST:
            # Slot was filled by another configuration while this one was building
            await self._close(handle)
            return self._reject(current.fingerprint, fingerprint)

        if current.generation > generation:
            # A newer request already published; this build is stale
            logger.info(
                f"Discarded stale {self.kind} build {fingerprint.label}, "
                f"{current.fingerprint.label} is in service"
            )
            await self._close(handle)
            return Acquired(current.handle, current.fingerprint, reused=True)

        self._slot = CachedResource(fingerprint, handle, generation=generation)
        logger.warning(
            f"Configuration drift on {self.kind} resource: "
            f"replaced {current.fingerprint.label} with {fingerprint.label}"
        )
        await self._close(current.handle)
        return Acquired(handle, fingerprint)

    def _reject(
        self,
        cached: ResourceFingerprint,
        requested: ResourceFingerprint
    ) -> Conflict:
        logger.error(
            f"Configuration drift on {self.kind} resource rejected: "
            f"in service {cached.label}, requested {requested.label}"
        )
        return Conflict(cached=cached, requested=requested)

    async def _close(self, handle: Any) -> None:
        if not isinstance(handle, Closeable):
            return
        try:
            await handle.aclose()
        except Exception as e:
            logger.warning(f"Error closing evicted {self.kind} handle: {e}")

    async def release(self) -> bool:
        """
        Empty the slot and close its handle if it is Closeable.

        Returns:
            True if a handle was released
        """
        slot = self._slot
        if slot is None:
            return False

        self._slot = None
        if isinstance(slot.handle, Closeable):
            await slot.handle.aclose()
        logger.info(f"Released {self.kind} resource: {slot.fingerprint.label}")
        return True
