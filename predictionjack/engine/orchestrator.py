"""
Transaction orchestrator.

Lifecycle of one ``PendingIntent``::

    created -> submitted -> confirming -> confirmed
        \\           \\            \\-> failed
         \\-> failed  \\-> failed

``confirmed`` and ``failed`` are terminal. A confirmation that times out
leaves the intent in ``confirming`` with ``listening=False``: the chain still
owns the transaction and nothing here claims it was cancelled. Such an
intent moves to ``unresolved`` and no longer blocks sending the same action
again.

On confirmation the intent's optimistic patch (if any) goes onto the
store's overlay layer, pinned to the confirming block, and the intent's
snapshot keys are refreshed out of band.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Hashable, Optional

from ..chain.errors import (
    ChainError,
    InsufficientAllowance,
    InsufficientFunds,
    InvalidTransition,
    SubmitError,
    UserRejected,
)
from ..chain.models import Receipt
from ..chain.reader import ChainReader
from ..chain.utils import explorer_tx_url
from . import intents
from .intents import Intent, IntentKind
from .store import OverlayLayer

logger = logging.getLogger(__name__)


class IntentStatus(str, Enum):
    CREATED = "created"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.CREATED: frozenset({IntentStatus.SUBMITTED, IntentStatus.FAILED}),
    IntentStatus.SUBMITTED: frozenset({IntentStatus.CONFIRMING, IntentStatus.FAILED}),
    IntentStatus.CONFIRMING: frozenset({IntentStatus.CONFIRMED, IntentStatus.FAILED}),
    IntentStatus.CONFIRMED: frozenset(),
    IntentStatus.FAILED: frozenset(),
}

TERMINAL = frozenset({IntentStatus.CONFIRMED, IntentStatus.FAILED})


@dataclass
class PendingIntent:
    intent: Intent
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: IntentStatus = IntentStatus.CREATED
    created_at: float = field(default_factory=time.time)
    submitted_at: Optional[float] = None
    hash: Optional[str] = None
    batch_id: Optional[str] = None
    error: Optional[str] = None
    user_rejected: bool = False
    listening: bool = True
    confirmed_block: Optional[int] = None

    @property
    def kind(self) -> IntentKind:
        return self.intent.kind

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL

    def transition(self, new: IntentStatus) -> None:
        if new not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Intent {self.id} cannot go {self.status.value} -> {new.value}"
            )
        logger.debug("Intent %s: %s -> %s", self.id, self.status.value, new.value)
        self.status = new
        if new == IntentStatus.SUBMITTED:
            self.submitted_at = time.time()

    def explorer_url(self, chain_id: int = 8453) -> Optional[str]:
        return explorer_tx_url(self.hash, chain_id) if self.hash else None


class BatchMode(str, Enum):
    ATOMIC = "atomic"
    SEQUENTIAL = "sequential"


@dataclass
class BatchExecution:
    """
    Result of ``submit_batch``.

    ``two_step`` is True for a sequential fallback with more than one step;
    ``step`` then reads ``approving`` or ``processing`` while it runs.
    """
    mode: BatchMode
    steps: list[PendingIntent] = field(default_factory=list)
    step: Optional[str] = None
    total_steps: int = 1

    @property
    def two_step(self) -> bool:
        return self.mode == BatchMode.SEQUENTIAL and self.total_steps > 1

    @property
    def final(self) -> Optional[PendingIntent]:
        return self.steps[-1] if self.steps else None

    @property
    def succeeded(self) -> bool:
        return (
            len(self.steps) == (1 if self.mode == BatchMode.ATOMIC else self.total_steps)
            and all(p.status == IntentStatus.CONFIRMED for p in self.steps)
        )

    @property
    def status_label(self) -> str:
        if self.succeeded:
            return "Confirmed"
        if any(p.status == IntentStatus.FAILED for p in self.steps):
            return "Failed"
        if self.step == "approving":
            return "Approving..."
        return "Processing..."


Listener = Callable[[PendingIntent], Any]
Refresher = Callable[..., Awaitable[Any]]


class TransactionOrchestrator:

    def __init__(
        self,
        reader: ChainReader,
        overlays: OverlayLayer,
        refresher: Optional[Refresher] = None,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 1.0,
        approve_amount: Optional[int] = None,
    ):
        self.reader = reader
        self.overlays = overlays
        self.refresher = refresher
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.approve_amount = approve_amount
        self._in_flight: dict[tuple, PendingIntent] = {}
        self._listeners: list[Listener] = []
        self._waiters: dict[str, asyncio.Future] = {}
        self.history: list[PendingIntent] = []
        # Sent but no longer watched (timeout, lost receipt, stop_listening).
        # Not matched by the duplicate guard.
        self.unresolved: list[PendingIntent] = []

    @classmethod
    def from_config(
        cls,
        config: dict,
        reader: ChainReader,
        overlays: OverlayLayer,
        refresher: Optional[Refresher] = None,
    ) -> "TransactionOrchestrator":
        tx_cfg = config.get("transactions", {})
        approve_amount = tx_cfg.get("approve_amount")
        return cls(
            reader,
            overlays,
            refresher=refresher,
            confirmation_timeout=tx_cfg.get("confirmation_timeout", 120.0),
            poll_interval=tx_cfg.get("poll_interval", 1.0),
            approve_amount=int(approve_amount) if approve_amount is not None else None,
        )

    # ── Listeners ────────────────────────────────────────────────────

    def add_listener(self, listener: Listener) -> None:
        """Called (or awaited) after every status change."""
        self._listeners.append(listener)

    async def _emit(self, pending: PendingIntent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(pending)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Intent listener failed for %s: %s", pending.id, e)

    def _forget(self, pending: PendingIntent) -> None:
        key = pending.intent.dedupe_key
        if self._in_flight.get(key) is pending:
            del self._in_flight[key]

    def _release(self, pending: PendingIntent) -> None:
        """Stop guarding ``pending`` so the same action can be sent again."""
        self._forget(pending)
        if pending not in self.unresolved:
            self.unresolved.append(pending)

    async def _fail(self, pending: PendingIntent, error: str, *, user_rejected: bool = False) -> PendingIntent:
        pending.transition(IntentStatus.FAILED)
        pending.error = error
        pending.user_rejected = user_rejected
        self._forget(pending)
        if pending in self.unresolved:
            self.unresolved.remove(pending)
        if pending.intent.patch is not None:
            self.overlays.discard(pending.intent.patch_key, pending.id)
        if user_rejected:
            logger.info("%s rejected in wallet", pending.intent.description)
        else:
            logger.warning("%s failed: %s", pending.intent.description, error)
        await self._emit(pending)
        return pending

    # ── Pre-flight checks ────────────────────────────────────────────

    @staticmethod
    def check_funds(required: int, available: Optional[int], asset: str = "ETH") -> None:
        """Raise InsufficientFunds; an unknown balance is not checked."""
        if available is not None and available < required:
            raise InsufficientFunds(required, available, asset)

    @staticmethod
    def check_allowance(required: int, allowance: Optional[int], spender: str) -> None:
        if allowance is None or allowance < required:
            raise InsufficientAllowance(required, allowance or 0, spender)

    def plan_with_approval(
        self,
        action: Intent,
        account: str,
        spender: str,
        required: int,
        allowance: Optional[int],
    ) -> list[Intent]:
        """
        ``[action]`` when the allowance covers ``required``, else
        ``[approve, action]``. An unknown allowance routes through approve.
        """
        if not isinstance(required, int) or (allowance is not None and not isinstance(allowance, int)):
            raise TypeError("allowance and required amount must be integers")
        if allowance is not None and allowance >= required:
            return [action]
        amount = max(required, self.approve_amount or 0)
        return [intents.approve(account, spender, amount), action]

    # ── Single intent ────────────────────────────────────────────────

    async def submit(self, intent: Intent) -> PendingIntent:
        """
        Hand one intent to the wallet.

        Re-submitting an intent identical to one still in flight returns
        the existing PendingIntent. Wallet refusals and any other error
        raised while sending come back as a failed PendingIntent carrying
        the reason.
        """
        existing = self._in_flight.get(intent.dedupe_key)
        if existing is not None and not existing.terminal:
            logger.info("%s already in flight as %s", intent.description, existing.id)
            return existing

        pending = PendingIntent(intent)
        self._in_flight[intent.dedupe_key] = pending
        self.history.append(pending)
        await self._emit(pending)

        try:
            tx_hash = await self.reader.write(intent.call)
        except UserRejected as e:
            return await self._fail(pending, e.reason, user_rejected=True)
        except SubmitError as e:
            return await self._fail(pending, e.reason)
        except Exception as e:
            logger.error("Unexpected error sending %s: %r", intent.description, e)
            return await self._fail(pending, f"{type(e).__name__}: {e}")

        pending.hash = tx_hash
        pending.transition(IntentStatus.SUBMITTED)
        logger.info("%s submitted: %s", intent.description, tx_hash)
        await self._emit(pending)
        return pending

    async def await_confirmation(self, pending: PendingIntent) -> PendingIntent:
        if pending.terminal:
            return pending
        if pending.status == IntentStatus.CREATED:
            raise InvalidTransition(f"Intent {pending.id} was never submitted")
        if pending.status == IntentStatus.SUBMITTED:
            pending.transition(IntentStatus.CONFIRMING)
            await self._emit(pending)

        pending.listening = True
        if pending.batch_id is not None:
            waiter = asyncio.ensure_future(self._wait_for_batch(pending.batch_id))
        else:
            waiter = asyncio.ensure_future(self.reader.wait_for_receipt(
                pending.hash, timeout=self.confirmation_timeout, poll_interval=self.poll_interval
            ))
        self._waiters[pending.id] = waiter
        try:
            receipt = await waiter
        except TimeoutError:
            pending.listening = False
            self._release(pending)
            logger.warning(
                "%s not confirmed after %ss; still pending on chain",
                pending.intent.description, self.confirmation_timeout,
            )
            await self._emit(pending)
            return pending
        except asyncio.CancelledError:
            stopped = waiter.cancelled() and not pending.listening
            pending.listening = False
            self._release(pending)
            if not stopped:
                raise
            logger.info("Stopped listening for %s", pending.intent.description)
            await self._emit(pending)
            return pending
        except ChainError as e:
            pending.listening = False
            pending.error = str(e)
            self._release(pending)
            logger.warning("Lost track of %s: %s", pending.intent.description, e)
            await self._emit(pending)
            return pending
        finally:
            self._waiters.pop(pending.id, None)

        if not receipt.succeeded:
            return await self._fail(pending, "Transaction reverted")
        await self._confirm(pending, receipt)
        return pending

    async def _confirm(self, pending: PendingIntent, receipt: Receipt) -> None:
        pending.transition(IntentStatus.CONFIRMED)
        pending.confirmed_block = receipt.block_number
        pending.listening = False
        self._forget(pending)
        if pending in self.unresolved:
            self.unresolved.remove(pending)
        intent = pending.intent
        logger.info("%s confirmed in block %s", intent.description, receipt.block_number)

        if intent.patch is not None and intent.patch_key is not None:
            self.overlays.apply(intent.patch_key, pending.id, intent.patch, receipt.block_number)

        await self._emit(pending)
        if self.refresher is not None and intent.refresh_keys:
            await self.refresher(*intent.refresh_keys)

    async def _wait_for_batch(self, batch_id: str) -> Receipt:
        """Poll ``wallet_getCallsStatus`` until it settles or times out."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout
        while True:
            status = await self.reader.get_calls_status(batch_id)
            if status.status == "success":
                blocks = [r.block_number for r in status.receipts if r.block_number is not None]
                ok = all(r.succeeded for r in status.receipts)
                return Receipt(
                    tx_hash=status.receipts[-1].tx_hash if status.receipts else batch_id,
                    status=1 if ok else 0,
                    block_number=max(blocks) if blocks else None,
                )
            if status.status == "failure":
                return Receipt(tx_hash=batch_id, status=0)
            if loop.time() >= deadline:
                raise TimeoutError(f"Batch {batch_id} not settled")
            await asyncio.sleep(self.poll_interval)

    async def run(self, intent: Intent) -> PendingIntent:
        """Submit and wait: the usual path for a single action."""
        pending = await self.submit(intent)
        if pending.status == IntentStatus.SUBMITTED:
            await self.await_confirmation(pending)
        return pending

    def stop_listening(self, pending: PendingIntent) -> None:
        """Stop tracking; the transaction itself is not (and cannot be) cancelled."""
        pending.listening = False
        waiter = self._waiters.get(pending.id)
        if waiter is not None:
            waiter.cancel()

    # ── Batches ──────────────────────────────────────────────────────

    async def submit_batch(
        self,
        batch: list[Intent],
        on_step: Optional[Callable[[BatchExecution], Any]] = None,
    ) -> BatchExecution:
        """
        Run ``batch`` in order: as one atomic wallet call when the wallet
        supports it, else one by one with each step waiting for the
        previous step's confirmation.
        """
        if not batch:
            raise ValueError("empty batch")

        try:
            atomic = len(batch) > 1 and await self.reader.supports_atomic_batch()
        except ChainError as e:
            logger.info("Capability check failed, falling back to sequential: %s", e)
            atomic = False

        if atomic:
            return await self._submit_atomic(batch)

        execution = BatchExecution(BatchMode.SEQUENTIAL, total_steps=len(batch))
        for intent in batch:
            execution.step = "approving" if intent.kind == IntentKind.APPROVE else "processing"
            if on_step is not None:
                on_step(execution)
            pending = await self.submit(intent)
            execution.steps.append(pending)
            if pending.status == IntentStatus.SUBMITTED:
                await self.await_confirmation(pending)
            if pending.status != IntentStatus.CONFIRMED:
                logger.info("Batch stopped at step %d/%d (%s)", len(execution.steps), len(batch), pending.status.value)
                break
        execution.step = None
        return execution

    async def _submit_atomic(self, batch: list[Intent]) -> BatchExecution:
        final = batch[-1]
        merged = replace(
            final,
            calls=tuple(c for i in batch for c in i.calls),
            description=" + ".join(i.description for i in batch),
            refresh_keys=tuple(dict.fromkeys(k for i in batch for k in i.refresh_keys)),
        )
        execution = BatchExecution(BatchMode.ATOMIC, step="processing", total_steps=len(batch))

        existing = self._in_flight.get(merged.dedupe_key)
        if existing is not None and not existing.terminal:
            execution.steps.append(existing)
            return execution

        pending = PendingIntent(merged)
        self._in_flight[merged.dedupe_key] = pending
        self.history.append(pending)
        execution.steps.append(pending)
        await self._emit(pending)

        try:
            pending.batch_id = await self.reader.write_batch(list(merged.calls))
        except UserRejected as e:
            await self._fail(pending, e.reason, user_rejected=True)
            return execution
        except SubmitError as e:
            await self._fail(pending, e.reason)
            return execution
        except Exception as e:
            logger.error("Unexpected error sending %s: %r", merged.description, e)
            await self._fail(pending, f"{type(e).__name__}: {e}")
            return execution

        pending.transition(IntentStatus.SUBMITTED)
        await self._emit(pending)
        await self.await_confirmation(pending)
        execution.step = None
        return execution

    # ── Introspection ────────────────────────────────────────────────

    def in_flight(self) -> list[PendingIntent]:
        return [p for p in self._in_flight.values() if not p.terminal]

    def pending_for(self, key: Hashable) -> list[PendingIntent]:
        return [p for p in self.in_flight() if key in p.intent.refresh_keys]
