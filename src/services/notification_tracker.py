"""
SIP-019 token metadata update notifications.

Notifications decide how a token is refreshed from now on:

- `standard`: refresh now, later refreshes need a new notification.
- `dynamic`: refresh now and again every `ttl` seconds through the dynamic sweep.
- `frozen`: one last refresh, then never again unless an operator forces it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from src.config import settings
from src.models.job import TokenTarget
from src.models.notification import FrozenToken, Notification, UpdateMode
from src.models.smart_contract import SmartContract
from src.models.token import Token
from src.utils.exceptions import TokenNotFound
from src.utils.time import utcnow

from .chain_tip import ChainTipService
from .job_queue import JobQueue


@dataclass
class MetadataUpdateEvent:
    """A SIP-019 notification as emitted by chain ingestion."""

    contract_principal: str
    block_height: int
    index_block_hash: str
    tx_id: str
    tx_index: int
    event_index: int
    update_mode: UpdateMode = UpdateMode.STANDARD
    token_numbers: Optional[List[int]] = None
    ttl: Optional[int] = None

    @property
    def order_key(self) -> Tuple[int, int, int]:
        return (self.block_height, self.tx_index, self.event_index)


class NotificationTracker:
    """Record update notifications and turn them into refresh jobs"""

    def __init__(self, db_session: Session, job_queue: Optional[JobQueue] = None):
        self.db = db_session
        self.job_queue = job_queue or JobQueue(db_session)
        self.chain_tip = ChainTipService(db_session)
        self.logger = structlog.get_logger()

    def apply_notifications(self, events: Iterable[MetadataUpdateEvent]) -> List[Notification]:
        """Apply a batch in chain order so the last event by that order wins."""
        applied = []
        for event in sorted(events, key=lambda e: e.order_key):
            notification = self.apply_notification(event)
            if notification is not None:
                applied.append(notification)
        return applied

    def apply_notification(self, event: MetadataUpdateEvent, commit: bool = True) -> Optional[Notification]:
        """
        Store a notification and enqueue the refreshes it calls for.

        Returns the stored notification, or None when the event was ignored because it is behind the
        chain tip, targets an unknown contract or was already processed.
        """
        tip_height = self.chain_tip.get_block_height()
        if event.block_height <= tip_height:
            self.logger.warning(
                "Ignoring notification at or behind chain tip",
                contract=event.contract_principal,
                block_height=event.block_height,
                chain_tip=tip_height,
            )
            return None

        contract = self.db.query(SmartContract).filter_by(principal=event.contract_principal).first()
        if contract is None:
            self.logger.warning(
                "Notification for unknown contract",
                contract=event.contract_principal,
                block_height=event.block_height,
            )
            return None

        if self._find_existing(contract.id, event) is not None:
            self.logger.info(
                "Notification already processed",
                contract=event.contract_principal,
                block_height=event.block_height,
                tx_id=event.tx_id,
                event_index=event.event_index,
            )
            return None

        notification = Notification(
            smart_contract_id=contract.id,
            block_height=event.block_height,
            index_block_hash=event.index_block_hash,
            tx_id=event.tx_id,
            tx_index=event.tx_index,
            event_index=event.event_index,
            update_mode=event.update_mode,
            ttl=event.ttl,
        )
        self.db.add(notification)
        self.db.flush()

        tokens = self._target_tokens(contract, event.token_numbers)
        frozen_ids = self._frozen_token_ids([token.id for token in tokens])
        enqueued = 0
        for token in tokens:
            self._link_latest_notification(token, notification)
            if token.id in frozen_ids:
                continue
            if event.update_mode == UpdateMode.FROZEN:
                self.db.add(FrozenToken(token_id=token.id, notification_id=notification.id))
            self.job_queue.enqueue(TokenTarget(token.id), commit=False)
            enqueued += 1

        if commit:
            self.db.commit()
        self.logger.info(
            "Applied metadata update notification",
            contract=event.contract_principal,
            update_mode=event.update_mode.value,
            token_numbers=event.token_numbers or "all",
            block_height=event.block_height,
            enqueued=enqueued,
            skipped_frozen=len(frozen_ids),
        )
        return notification

    def sweep_dynamic_tokens(self, now: Optional[datetime] = None) -> int:
        """
        Enqueue refreshes for dynamic tokens whose ttl has elapsed since their last refresh.

        Only one sweep runs at a time: the chain tip's sweep timestamp is claimed first and a caller
        that loses that race returns without doing anything.
        """
        now = now or utcnow()
        if self.chain_tip.try_begin_dynamic_sweep(now, settings.DYNAMIC_SWEEP_MIN_INTERVAL) is None:
            return 0

        rows = (
            self.db.query(Token, Notification.ttl)
            .join(Notification, Token.update_notification_id == Notification.id)
            .outerjoin(FrozenToken, FrozenToken.token_id == Token.id)
            .filter(Notification.update_mode == UpdateMode.DYNAMIC, FrozenToken.token_id.is_(None))
            .all()
        )
        enqueued = 0
        for token, ttl in rows:
            ttl = ttl or settings.METADATA_DYNAMIC_TOKEN_REFRESH_INTERVAL
            last_refresh = token.updated_at or token.created_at
            if last_refresh > now - timedelta(seconds=ttl):
                continue
            target = TokenTarget(token.id)
            if self.job_queue.active_job(target) is not None:
                continue
            self.job_queue.enqueue(target, commit=False)
            enqueued += 1
        self.db.commit()

        self.logger.info("Dynamic token sweep finished", dynamic_tokens=len(rows), enqueued=enqueued)
        return enqueued

    def force_refresh(self, contract_principal: str, token_numbers: Optional[List[int]] = None) -> int:
        """
        Administrative refresh. Removes frozen markers and enqueues a job for each token.
        """
        contract = self.db.query(SmartContract).filter_by(principal=contract_principal).first()
        if contract is None:
            raise TokenNotFound(f"Contract {contract_principal} not found")
        tokens = self._target_tokens(contract, token_numbers)
        if token_numbers and not tokens:
            raise TokenNotFound(f"Tokens {token_numbers} not found in {contract_principal}")

        token_ids = [token.id for token in tokens]
        unfrozen = 0
        if token_ids:
            unfrozen = (
                self.db.query(FrozenToken)
                .filter(FrozenToken.token_id.in_(token_ids))
                .delete(synchronize_session=False)
            )
        for token_id in token_ids:
            self.job_queue.enqueue(TokenTarget(token_id), commit=False)
        self.db.commit()

        self.logger.info(
            "Forced token refresh",
            contract=contract_principal,
            tokens=len(token_ids),
            unfrozen=unfrozen,
        )
        return len(token_ids)

    def is_frozen(self, token_id: int) -> bool:
        return self.db.get(FrozenToken, token_id) is not None

    def _find_existing(self, smart_contract_id: int, event: MetadataUpdateEvent) -> Optional[Notification]:
        return (
            self.db.query(Notification)
            .filter_by(
                smart_contract_id=smart_contract_id,
                block_height=event.block_height,
                index_block_hash=event.index_block_hash,
                tx_id=event.tx_id,
                tx_index=event.tx_index,
                event_index=event.event_index,
            )
            .first()
        )

    def _target_tokens(self, contract: SmartContract, token_numbers: Optional[List[int]]) -> List[Token]:
        query = self.db.query(Token).filter(Token.smart_contract_id == contract.id)
        if token_numbers:
            query = query.filter(Token.token_number.in_(token_numbers))
        tokens = query.order_by(Token.token_number.asc()).all()
        if token_numbers and len(tokens) < len(set(token_numbers)):
            found = {token.token_number for token in tokens}
            self.logger.warning(
                "Notification targets unknown tokens",
                contract=contract.principal,
                missing=sorted(set(token_numbers) - found),
            )
        return tokens

    def _frozen_token_ids(self, token_ids: List[int]) -> set:
        if not token_ids:
            return set()
        rows = self.db.query(FrozenToken.token_id).filter(FrozenToken.token_id.in_(token_ids)).all()
        return {row.token_id for row in rows}

    def _link_latest_notification(self, token: Token, notification: Notification) -> None:
        current = token.update_notification
        if current is None or notification.order_key > current.order_key:
            token.update_notification_id = notification.id
            token.update_notification = notification
