"""
Action dispatcher.

Routes ``(provider, action, target)`` to a capability through a closed
lookup table. Adding a provider means registering a table entry; the
dispatcher itself never changes and never guesses a default provider.
"""

import logging
from typing import Dict, FrozenSet, List, Mapping, Optional, Union

from ..exceptions import InvalidPlanError, UnsupportedActionError, UnsupportedProviderError
from ..models import ActionCommand, ActionResult
from .capabilities import CapabilityFn, InMemoryResourceBackend, ResourceBackend, build_capability_table
from .policy import SecurityPolicy

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """
    Stateless router from provider/action pairs to capabilities.

    Example:
        >>> dispatcher = ActionDispatcher.with_defaults()
        >>> result = await dispatcher.dispatch("AWS", "RESTART", "checkout-fn")
        >>> result.outcome
        <ActionOutcome.SIMULATED_SUCCESS: 'SIMULATED_SUCCESS'>
    """

    def __init__(
        self,
        capabilities: Mapping[str, Mapping[ActionCommand, CapabilityFn]],
        policy: Optional[SecurityPolicy] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            capabilities: provider -> action -> capability function
            policy: Security policy consulted before every dispatch
        """
        self._table: Dict[str, Dict[ActionCommand, CapabilityFn]] = {}
        for provider, actions in capabilities.items():
            self.register(provider, actions)
        self.policy = policy or SecurityPolicy()

    @classmethod
    def with_defaults(
        cls,
        backend: Optional[ResourceBackend] = None,
        policy: Optional[SecurityPolicy] = None,
    ) -> "ActionDispatcher":
        """Dispatcher over the AWS/AZURE/GCP playbooks and the given backend."""
        return cls(build_capability_table(backend or InMemoryResourceBackend()), policy=policy)

    def register(self, provider: str, actions: Mapping[ActionCommand, CapabilityFn]) -> None:
        """Register (or replace) a provider's capability set."""
        key = provider.strip().upper()
        self._table[key] = dict(actions)
        logger.debug(f"Registered provider {key}: {sorted(a.value for a in actions)}")

    @property
    def providers(self) -> List[str]:
        return sorted(self._table)

    def capabilities(self, provider: str) -> FrozenSet[ActionCommand]:
        """
        Actions supported by ``provider``.

        Raises:
            UnsupportedProviderError: If no capability set is registered
        """
        actions = self._table.get((provider or "").strip().upper())
        if actions is None:
            raise UnsupportedProviderError(f"Unsupported provider: {provider}")
        return frozenset(actions)

    def supports(self, provider: str, action: ActionCommand) -> bool:
        actions = self._table.get((provider or "").strip().upper())
        return actions is not None and action in actions

    async def dispatch(
        self,
        provider: str,
        action: Union[ActionCommand, str],
        target: str,
    ) -> ActionResult:
        """
        Execute ``action`` on ``target`` through ``provider``.

        Raises:
            UnsupportedActionError: Action not in vocabulary or not offered by provider
            InvalidPlanError: Target missing
            SecurityVetoError: Action/target pair on the deny-list
            UnsupportedProviderError: No capability set for the provider
        """
        command = ActionCommand.parse(action)
        if command is None:
            raise UnsupportedActionError(f"Unknown remediation command: {action}")
        if not target or not target.strip():
            raise InvalidPlanError(f"{command.value} requires a target resource")

        self.policy.check(command, target)

        provider_key = (provider or "").strip().upper()
        actions = self._table.get(provider_key)
        if actions is None:
            raise UnsupportedProviderError(f"Unsupported provider: {provider}")
        capability = actions.get(command)
        if capability is None:
            raise UnsupportedActionError(f"[{provider_key}] Unsupported action: {command.value}")

        logger.info(f"[{provider_key}] Executing {command.value} for {target}")
        result = await capability(target)
        logger.info(f"[{provider_key}] {command.value} on {target}: {result.outcome.value} ({result.message})")
        return result
