"""
ProfileReconciler: make `profiles.role` equal the declared role.

Why:
    The profile row is materialized by a trigger we do not control, with the
    default role. Row-level rules may silently no-op or reject a client-side
    write. We therefore try an ordered list of idempotent write strategies and
    trust only a read-back, never the write call's reported success.

Behavior:
    - Missing row: stop early (PROFILE_MISSING), the intent stays.
    - Already equal: clear the intent, zero writes.
    - Strategies run strictly one after another; the first verified
      read-back wins and clears the intent.
    - Denied writes and read-back mismatches fall through to the next
      strategy; any other failure ends the pass as DIVERGED.
    - `reconcile` never raises.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

import structlog

from .domain import (
    ConvergenceOutcome,
    Profile,
    ProfileNotYetCreated,
    ReconcileResult,
    WritePermissionDenied,
)
from .intents import PendingIntentStore
from .ports import PrivilegedRoleAssigner, ProfileStore

logger = structlog.get_logger("campus.identity_access.reconciler")


class WriteStrategy:
    name = "base"

    def available(self, privileged: Optional[PrivilegedRoleAssigner]) -> bool:
        return True

    async def write(
        self,
        *,
        profiles: ProfileStore,
        privileged: Optional[PrivilegedRoleAssigner],
        current: Profile,
        role: str,
    ) -> None:
        raise NotImplementedError


class DirectUpdate(WriteStrategy):
    name = "direct_update"

    async def write(self, *, profiles, privileged, current, role):
        await profiles.update_role(current.id, role)


class Upsert(WriteStrategy):
    """Full row keyed by id; merges into the existing row."""

    name = "upsert"

    async def write(self, *, profiles, privileged, current, role):
        await profiles.upsert_profile(identity_id=current.id, email=current.email, role=role)


class PrivilegedAssignment(WriteStrategy):
    name = "privileged"

    def available(self, privileged):
        return privileged is not None

    async def write(self, *, profiles, privileged, current, role):
        await privileged.assign_role(current.id, role)


DEFAULT_STRATEGIES: tuple[WriteStrategy, ...] = (DirectUpdate(), Upsert(), PrivilegedAssignment())


@dataclass(frozen=True)
class MaterializationPolicy:
    """Bounded exponential backoff while waiting for the profile row."""

    attempts: int = 5
    initial_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 8.0

    def delays(self):
        delay = self.initial_delay
        for _ in range(max(0, self.attempts - 1)):
            yield min(delay, self.max_delay)
            delay *= self.factor


class ProfileReconciler:
    def __init__(
        self,
        *,
        intents: PendingIntentStore,
        privileged: Optional[PrivilegedRoleAssigner] = None,
        strategies: Sequence[WriteStrategy] = DEFAULT_STRATEGIES,
        policy: MaterializationPolicy | None = None,
    ) -> None:
        self._intents = intents
        self._privileged = privileged
        self._strategies = tuple(strategies)
        self.policy = policy or MaterializationPolicy()

    def _clear_intent(self, identity_id: str, declared_role: str) -> None:
        # A newer declaration for the same identity must survive this pass.
        try:
            if self._intents.get(identity_id) == declared_role:
                self._intents.clear(identity_id)
        except Exception as exc:
            logger.error("pending_intent_clear_failed", identity_id=identity_id, error=str(exc))

    @staticmethod
    async def _load(profiles: ProfileStore, identity_id: str) -> Profile:
        current = await profiles.read_profile(identity_id)
        if current is None:
            raise ProfileNotYetCreated(identity_id)
        return current

    async def reconcile(self, identity_id: str, declared_role: str, *, profiles: ProfileStore) -> ReconcileResult:
        log = logger.bind(identity_id=identity_id, declared_role=declared_role)
        try:
            current = await self._load(profiles, identity_id)
        except ProfileNotYetCreated:
            log.info("profile_not_yet_created")
            return ReconcileResult(identity_id, declared_role, ConvergenceOutcome.PROFILE_MISSING)
        except Exception as exc:
            log.error("profile_read_failed", error=str(exc))
            return ReconcileResult(identity_id, declared_role, ConvergenceOutcome.DIVERGED)

        if current.role == declared_role:
            self._clear_intent(identity_id, declared_role)
            log.info("role_already_converged")
            return ReconcileResult(
                identity_id, declared_role, ConvergenceOutcome.CONVERGED, profile=current
            )

        writes = 0
        attempted: list[str] = []
        for strategy in self._strategies:
            if not strategy.available(self._privileged):
                log.debug("role_strategy_unavailable", strategy=strategy.name)
                continue
            attempted.append(strategy.name)
            writes += 1
            try:
                await strategy.write(
                    profiles=profiles, privileged=self._privileged, current=current, role=declared_role
                )
            except WritePermissionDenied as exc:
                log.warning("role_write_denied", strategy=strategy.name, error=str(exc))
                continue
            except Exception as exc:
                log.error("role_write_failed", strategy=strategy.name, error=str(exc))
                return ReconcileResult(
                    identity_id,
                    declared_role,
                    ConvergenceOutcome.DIVERGED,
                    writes=writes,
                    attempted=tuple(attempted),
                    profile=current,
                )

            try:
                after = await profiles.read_profile(identity_id)
            except Exception as exc:
                log.error("role_readback_failed", strategy=strategy.name, error=str(exc))
                return ReconcileResult(
                    identity_id,
                    declared_role,
                    ConvergenceOutcome.DIVERGED,
                    writes=writes,
                    attempted=tuple(attempted),
                    profile=current,
                )
            if after is not None:
                current = after
            if after is not None and after.role == declared_role:
                self._clear_intent(identity_id, declared_role)
                log.info("role_converged", strategy=strategy.name, writes=writes)
                return ReconcileResult(
                    identity_id,
                    declared_role,
                    ConvergenceOutcome.CONVERGED,
                    strategy=strategy.name,
                    writes=writes,
                    attempted=tuple(attempted),
                    profile=after,
                )
            log.warning(
                "role_readback_mismatch",
                strategy=strategy.name,
                observed=after.role if after is not None else None,
            )

        log.warning("role_diverged", attempted=attempted)
        return ReconcileResult(
            identity_id,
            declared_role,
            ConvergenceOutcome.DIVERGED,
            writes=writes,
            attempted=tuple(attempted),
            profile=current,
        )

    async def reconcile_eventually(
        self, identity_id: str, declared_role: str, *, profiles: ProfileStore
    ) -> ReconcileResult:
        """Retry while the profile row has not been materialized yet."""
        result = await self.reconcile(identity_id, declared_role, profiles=profiles)
        for delay in self.policy.delays():
            if result.outcome is not ConvergenceOutcome.PROFILE_MISSING:
                break
            logger.debug("profile_materialization_wait", identity_id=identity_id, delay=delay)
            await asyncio.sleep(delay)
            result = await self.reconcile(identity_id, declared_role, profiles=profiles)
        return result


__all__ = [
    "WriteStrategy",
    "DirectUpdate",
    "Upsert",
    "PrivilegedAssignment",
    "DEFAULT_STRATEGIES",
    "MaterializationPolicy",
    "ProfileReconciler",
]
