"""
Provider capability implementations.

Each provider exposes a fixed, enumerable set of actions. A capability is an
async function taking a target and returning an ``ActionResult``; the
functions here only talk to a ``ResourceBackend``, so real cloud SDK calls
live behind that interface.

Recoverable backend errors degrade instead of raising:

- resource not found  -> SIMULATED_SUCCESS
- already at the limit -> SUCCESS with message ``at_max`` (before == after)
- any other fault      -> FAILED
"""

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple

from ..exceptions import ProviderFaultError, ResourceAtLimitError, ResourceNotFoundError
from ..models import ActionCommand, ActionOutcome, ActionResult, Provider

logger = logging.getLogger(__name__)

CapabilityFn = Callable[[str], Awaitable[ActionResult]]


@dataclass(frozen=True)
class ProviderLimits:
    """Upper bounds a provider enforces on resource configuration."""
    max_memory_mb: int
    max_timeout_seconds: int
    max_capacity: int


PROVIDER_LIMITS: Dict[Provider, ProviderLimits] = {
    Provider.AWS: ProviderLimits(max_memory_mb=10240, max_timeout_seconds=900, max_capacity=10),
    Provider.AZURE: ProviderLimits(max_memory_mb=14336, max_timeout_seconds=600, max_capacity=30),
    Provider.GCP: ProviderLimits(max_memory_mb=16384, max_timeout_seconds=3600, max_capacity=100),
}

PROVIDER_ACTIONS: Dict[Provider, Tuple[ActionCommand, ...]] = {
    Provider.AWS: (
        ActionCommand.RESTART,
        ActionCommand.SCALE_UP,
        ActionCommand.INCREASE_MEMORY,
        ActionCommand.INCREASE_TIMEOUT,
        ActionCommand.ROLLBACK,
        ActionCommand.LOG_ONLY,
    ),
    Provider.AZURE: (
        ActionCommand.RESTART,
        ActionCommand.SCALE_UP,
        ActionCommand.INCREASE_MEMORY,
        ActionCommand.INCREASE_TIMEOUT,
        ActionCommand.LOG_ONLY,
    ),
    Provider.GCP: (
        ActionCommand.RESTART,
        ActionCommand.SCALE_UP,
        ActionCommand.INCREASE_MEMORY,
        ActionCommand.INCREASE_TIMEOUT,
        ActionCommand.ROLLBACK,
        ActionCommand.LOG_ONLY,
    ),
}


class ResourceBackend(ABC):
    """Interface through which capabilities read and change resources."""

    @abstractmethod
    async def get_config(self, target: str) -> Dict[str, Any]:
        """Return ``memory_mb``, ``timeout_seconds``, ``capacity`` and ``version``."""
        pass

    @abstractmethod
    async def update_config(self, target: str, **changes: Any) -> Dict[str, Any]:
        """Apply configuration changes and return the new configuration."""
        pass

    @abstractmethod
    async def restart(self, target: str) -> None:
        """Force a restart / cold start of the target."""
        pass

    @abstractmethod
    async def rollback(self, target: str) -> Tuple[int, int]:
        """Roll back to the previous version. Returns (before, after)."""
        pass


class InMemoryResourceBackend(ResourceBackend):
    """
    Simulated resource backend.

    Resources must be registered before use unless ``auto_create`` is set;
    unknown targets raise ``ResourceNotFoundError`` like a real provider.

    Example:
        >>> backend = InMemoryResourceBackend()
        >>> backend.add_resource("checkout-fn", memory_mb=512)
    """

    DEFAULTS = {"memory_mb": 128, "timeout_seconds": 3, "capacity": 1, "version": 1}

    def __init__(self, auto_create: bool = False, latency_seconds: float = 0.0):
        self.auto_create = auto_create
        self.latency_seconds = latency_seconds
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._faults: Dict[str, Exception] = {}
        self.restarts: Dict[str, int] = {}

    def add_resource(self, target: str, **config: Any) -> None:
        self._resources[target] = {**self.DEFAULTS, **config}

    def inject_fault(self, target: str, error: Optional[Exception] = None) -> None:
        """Make every call against ``target`` fail with ``error``."""
        self._faults[target] = error or ProviderFaultError(f"Injected fault for {target}")

    def clear_fault(self, target: str) -> None:
        self._faults.pop(target, None)

    async def _resource(self, target: str) -> Dict[str, Any]:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if target in self._faults:
            raise self._faults[target]
        if target not in self._resources:
            if not self.auto_create:
                raise ResourceNotFoundError(f"Resource {target} not found")
            self.add_resource(target)
        return self._resources[target]

    async def get_config(self, target: str) -> Dict[str, Any]:
        return dict(await self._resource(target))

    async def update_config(self, target: str, **changes: Any) -> Dict[str, Any]:
        resource = await self._resource(target)
        resource.update(changes)
        return dict(resource)

    async def restart(self, target: str) -> None:
        await self._resource(target)
        self.restarts[target] = self.restarts.get(target, 0) + 1

    async def rollback(self, target: str) -> Tuple[int, int]:
        resource = await self._resource(target)
        before = resource["version"]
        if before <= 1:
            raise ResourceAtLimitError(f"{target} has no previous version")
        resource["version"] = before - 1
        return before, before - 1


def _result(provider: str, action: ActionCommand, target: str, outcome: ActionOutcome,
            message: str, before: Any = None, after: Any = None) -> ActionResult:
    return ActionResult(
        provider=provider,
        action=action,
        target=target,
        outcome=outcome,
        before=before,
        after=after,
        message=message,
    )


def degrading(action: ActionCommand):
    """Map backend errors of a capability to degraded results."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(backend: ResourceBackend, provider: str, limits: ProviderLimits,
                          target: str) -> ActionResult:
            try:
                return await func(backend, provider, limits, target)
            except ResourceNotFoundError as e:
                logger.warning(f"[{provider}] {e}; simulating {action.value}")
                return _result(provider, action, target, ActionOutcome.SIMULATED_SUCCESS,
                               f"Simulated {action.value} ({e})")
            except ResourceAtLimitError as e:
                logger.info(f"[{provider}] {action.value} on {target} at limit: {e}")
                return _result(provider, action, target, ActionOutcome.SUCCESS, "at_max")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{provider}] {action.value} on {target} failed: {e}")
                return _result(provider, action, target, ActionOutcome.FAILED, f"{action.value} failed: {e}")
        return wrapper
    return decorator


@degrading(ActionCommand.RESTART)
async def restart(backend: ResourceBackend, provider: str, limits: ProviderLimits,
                  target: str) -> ActionResult:
    await backend.restart(target)
    logger.info(f"[{provider}] Restart initiated for {target}")
    return _result(provider, ActionCommand.RESTART, target, ActionOutcome.SUCCESS, "Restart initiated")


@degrading(ActionCommand.SCALE_UP)
async def scale_up(backend: ResourceBackend, provider: str, limits: ProviderLimits,
                   target: str) -> ActionResult:
    current = (await backend.get_config(target))["capacity"]
    desired = min(current + 1, limits.max_capacity)
    if desired == current:
        return _result(provider, ActionCommand.SCALE_UP, target, ActionOutcome.SUCCESS,
                       "at_max", before=current, after=current)
    await backend.update_config(target, capacity=desired)
    logger.info(f"[{provider}] Capacity {target}: {current} -> {desired}")
    return _result(provider, ActionCommand.SCALE_UP, target, ActionOutcome.SUCCESS,
                   "Capacity increased", before=current, after=desired)


async def _double(backend: ResourceBackend, provider: str, target: str, action: ActionCommand,
                  key: str, maximum: int, unit: str) -> ActionResult:
    current = (await backend.get_config(target))[key]
    desired = min(current * 2, maximum)
    if desired == current:
        return _result(provider, action, target, ActionOutcome.SUCCESS, "at_max",
                       before=current, after=current)
    await backend.update_config(target, **{key: desired})
    logger.info(f"[{provider}] {key} {target}: {current}{unit} -> {desired}{unit}")
    return _result(provider, action, target, ActionOutcome.SUCCESS,
                   f"{key} {current}{unit} -> {desired}{unit}", before=current, after=desired)


@degrading(ActionCommand.INCREASE_MEMORY)
async def increase_memory(backend: ResourceBackend, provider: str, limits: ProviderLimits,
                          target: str) -> ActionResult:
    return await _double(backend, provider, target, ActionCommand.INCREASE_MEMORY,
                         "memory_mb", limits.max_memory_mb, "MB")


@degrading(ActionCommand.INCREASE_TIMEOUT)
async def increase_timeout(backend: ResourceBackend, provider: str, limits: ProviderLimits,
                           target: str) -> ActionResult:
    return await _double(backend, provider, target, ActionCommand.INCREASE_TIMEOUT,
                         "timeout_seconds", limits.max_timeout_seconds, "s")


@degrading(ActionCommand.ROLLBACK)
async def rollback(backend: ResourceBackend, provider: str, limits: ProviderLimits,
                   target: str) -> ActionResult:
    before, after = await backend.rollback(target)
    logger.info(f"[{provider}] Rolled back {target}: v{before} -> v{after}")
    return _result(provider, ActionCommand.ROLLBACK, target, ActionOutcome.SUCCESS,
                   "Rolled back to previous version", before=before, after=after)


async def log_only(backend: ResourceBackend, provider: str, limits: ProviderLimits,
                   target: str) -> ActionResult:
    logger.info(f"[{provider}] LOG_ONLY: {target} - no action taken")
    return _result(provider, ActionCommand.LOG_ONLY, target, ActionOutcome.SUCCESS, "No action taken")


OPERATIONS = {
    ActionCommand.RESTART: restart,
    ActionCommand.SCALE_UP: scale_up,
    ActionCommand.INCREASE_MEMORY: increase_memory,
    ActionCommand.INCREASE_TIMEOUT: increase_timeout,
    ActionCommand.ROLLBACK: rollback,
    ActionCommand.LOG_ONLY: log_only,
}


def build_capability_table(
    backend: ResourceBackend,
    providers: Optional[Mapping[Provider, Iterable[ActionCommand]]] = None,
) -> Dict[str, Dict[ActionCommand, CapabilityFn]]:
    """
    Build the closed (provider, action) -> capability table.

    Args:
        backend: Resource backend shared by all capabilities
        providers: Provider -> supported actions (defaults to ``PROVIDER_ACTIONS``)
    """
    providers = providers if providers is not None else PROVIDER_ACTIONS
    table: Dict[str, Dict[ActionCommand, CapabilityFn]] = {}
    for provider, actions in providers.items():
        limits = PROVIDER_LIMITS[provider]
        table[provider.value] = {
            action: functools.partial(OPERATIONS[action], backend, provider.value, limits)
            for action in actions
        }
    return table
