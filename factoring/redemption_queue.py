"""
redemption_queue.py - FIFO Queue of Deferred Redemptions

Redemptions that exceed available liquidity wait here until the liquidity
gate can pay them.

Storage is an append-only array of slots plus a head cursor:

    index:   0      1      2      3      4
    slot:  [A:50] [----] [B:30] [----] [C:20]
                   ^head skips holes lazily

A slot is cancelled by zeroing it (owner None, amounts 0). Cancelled slots
stay in the array as holes until compact_queue() rewrites it. The head only
ever moves forward, and each hole is skipped at most once, so advancing it is
amortized O(1).

Each owner has at most one active slot. Queuing again for the same owner
cancels the old slot and appends a new one at the back: the owner loses its
place in line and the new amount replaces the old one.

Mutations require the queue authority (the fund itself); entry owners may
also cancel their own slot.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .core import (
    InvalidRedemptionType, InvalidOwner, InvalidReceiver, InvalidQueueIndex,
    NotAuthorized, QueueEmpty, AmountExceedsQueuedShares, AmountExceedsQueuedAssets,
    InvalidAmount,
)


ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class QueuedRedemption:
    """
    One queue slot. Exactly one of shares/assets is nonzero for an active
    slot; a cancelled slot has owner None and both amounts zero.
    """
    owner: Optional[str]
    receiver: Optional[str]
    shares: Decimal = ZERO
    assets: Decimal = ZERO

    @property
    def is_cancelled(self) -> bool:
        return self.owner is None

    @property
    def is_share_denominated(self) -> bool:
        return self.shares > ZERO


EMPTY_REDEMPTION = QueuedRedemption(owner=None, receiver=None)


@dataclass(frozen=True, slots=True)
class QueueStats:
    length: int
    total_shares: Decimal
    total_assets: Decimal


class RedemptionQueue:
    """
    Arena-backed FIFO with per-owner overwrite, cancellation and compaction.

    The queue is a working copy: the fund loads it from its state, mutates
    it while building a transaction and writes entries/head back.

    Example:
        queue = RedemptionQueue("pool")
        i = queue.queue_redemption("pool", "alice", "alice", Decimal("500"), ZERO)
        queue.remove_amount_from_first_owner("pool", Decimal("200"))
        queue.get_total_queued_for_owner("alice")   # (300, 0)
    """

    def __init__(
        self,
        authority: str,
        entries: Sequence[QueuedRedemption] = (),
        head: int = 0,
    ):
        if not authority:
            raise ValueError("queue authority cannot be empty")
        self.authority = authority
        self._entries: List[QueuedRedemption] = list(entries)
        self._head = head
        self._active_by_owner: Dict[str, int] = {}
        for index in range(self._head, len(self._entries)):
            entry = self._entries[index]
            if not entry.is_cancelled:
                self._active_by_owner[entry.owner] = index
        self._advance_head()

    # ========================================================================
    # STORAGE
    # ========================================================================

    @property
    def entries(self) -> Tuple[QueuedRedemption, ...]:
        """Raw slots, holes included."""
        return tuple(self._entries)

    @property
    def head(self) -> int:
        return self._head

    @property
    def array_length(self) -> int:
        return len(self._entries)

    def _advance_head(self) -> None:
        while self._head < len(self._entries) and self._entries[self._head].is_cancelled:
            self._head += 1

    def _require_authority(self, caller: str) -> None:
        if caller != self.authority:
            raise NotAuthorized(f"{caller} is not the queue authority")

    def _cancel_slot(self, index: int) -> QueuedRedemption:
        entry = self._entries[index]
        self._entries[index] = EMPTY_REDEMPTION
        if self._active_by_owner.get(entry.owner) == index:
            del self._active_by_owner[entry.owner]
        if index == self._head:
            self._advance_head()
        return entry

    def _check_index(self, index: int) -> QueuedRedemption:
        if index < self._head or index >= len(self._entries):
            raise InvalidQueueIndex(f"Queue index {index} out of range")
        entry = self._entries[index]
        if entry.is_cancelled:
            raise InvalidQueueIndex(f"Queue index {index} is cancelled")
        return entry

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def queue_redemption(
        self,
        caller: str,
        owner: str,
        receiver: str,
        shares: Decimal,
        assets: Decimal,
    ) -> int:
        """
        Append a redemption for owner, replacing any active one.

        Returns:
            Index of the new slot

        Raises:
            NotAuthorized: caller is not the authority
            InvalidRedemptionType: not exactly one of shares/assets nonzero
            InvalidOwner / InvalidReceiver: empty owner or receiver
        """
        self._require_authority(caller)
        if (shares > ZERO) == (assets > ZERO) or shares < ZERO or assets < ZERO:
            raise InvalidRedemptionType(
                f"exactly one of shares/assets must be nonzero, got shares={shares} assets={assets}"
            )
        if not owner:
            raise InvalidOwner("owner cannot be empty")
        if not receiver:
            raise InvalidReceiver("receiver cannot be empty")

        previous = self._active_by_owner.get(owner)
        if previous is not None:
            self._cancel_slot(previous)

        self._entries.append(QueuedRedemption(owner, receiver, shares, assets))
        index = len(self._entries) - 1
        self._active_by_owner[owner] = index
        self._advance_head()
        return index

    def cancel_queued_redemption(self, caller: str, index: int) -> QueuedRedemption:
        """
        Cancel a slot. Allowed for the slot's owner or the authority.

        Returns:
            The entry as it was before cancellation
        """
        entry = self._check_index(index)
        if caller != entry.owner and caller != self.authority:
            raise NotAuthorized(f"{caller} cannot cancel queue index {index}")
        return self._cancel_slot(index)

    def remove_amount_from_first_owner(self, caller: str, amount: Decimal) -> QueuedRedemption:
        """
        Draw the head slot down by amount, in the head's own denomination.

        An exhausted head is cancelled and the head advances.

        Returns:
            The updated head slot (EMPTY_REDEMPTION-like with zero amount
            when fully consumed)
        """
        self._require_authority(caller)
        if amount <= ZERO:
            raise InvalidAmount(f"amount must be positive, got {amount}")
        if self._head >= len(self._entries):
            raise QueueEmpty("redemption queue is empty")

        index = self._head
        entry = self._entries[index]
        if entry.is_share_denominated:
            if amount > entry.shares:
                raise AmountExceedsQueuedShares(
                    f"amount {amount} exceeds queued shares {entry.shares}"
                )
            updated = QueuedRedemption(entry.owner, entry.receiver, entry.shares - amount, ZERO)
            exhausted = updated.shares == ZERO
        else:
            if amount > entry.assets:
                raise AmountExceedsQueuedAssets(
                    f"amount {amount} exceeds queued assets {entry.assets}"
                )
            updated = QueuedRedemption(entry.owner, entry.receiver, ZERO, entry.assets - amount)
            exhausted = updated.assets == ZERO

        if exhausted:
            self._cancel_slot(index)
        else:
            self._entries[index] = updated
        return updated

    def compact_queue(self, caller: str) -> int:
        """
        Drop all holes, keep relative order, reset head to 0.

        Every previously returned index is invalid afterwards.

        Returns:
            Number of slots removed
        """
        self._require_authority(caller)
        live = [e for e in self._entries[self._head:] if not e.is_cancelled]
        removed = len(self._entries) - len(live)
        self._entries = live
        self._head = 0
        self._active_by_owner = {e.owner: i for i, e in enumerate(live)}
        return removed

    def clear_queue(self, caller: str) -> int:
        """Drop every slot. Returns the number of active entries dropped."""
        self._require_authority(caller)
        dropped = self.get_queue_length()
        self._entries = []
        self._head = 0
        self._active_by_owner = {}
        return dropped

    # ========================================================================
    # READ ACCESSORS
    # ========================================================================

    def iter_active(self) -> Iterator[Tuple[int, QueuedRedemption]]:
        """(index, entry) for each active slot from head, in queue order."""
        for index in range(self._head, len(self._entries)):
            entry = self._entries[index]
            if not entry.is_cancelled:
                yield index, entry

    def is_queue_empty(self) -> bool:
        return self._head >= len(self._entries)

    def get_queue_length(self) -> int:
        return sum(1 for _ in self.iter_active())

    def get_queued_redemption(self, index: int) -> QueuedRedemption:
        return self._check_index(index)

    def get_queued_redemptions_for_owner(self, owner: str) -> List[int]:
        return [index for index, entry in self.iter_active() if entry.owner == owner]

    def get_total_queued_for_owner(self, owner: str) -> Tuple[Decimal, Decimal]:
        """(total shares, total assets) across the owner's active slots."""
        shares = ZERO
        assets = ZERO
        for _, entry in self.iter_active():
            if entry.owner == owner:
                shares += entry.shares
                assets += entry.assets
        return shares, assets

    def get_next_redemption(self) -> QueuedRedemption:
        if self.is_queue_empty():
            return EMPTY_REDEMPTION
        return self._entries[self._head]

    def get_queue_stats(self) -> QueueStats:
        length = 0
        total_shares = ZERO
        total_assets = ZERO
        for _, entry in self.iter_active():
            length += 1
            total_shares += entry.shares
            total_assets += entry.assets
        return QueueStats(length=length, total_shares=total_shares, total_assets=total_assets)
