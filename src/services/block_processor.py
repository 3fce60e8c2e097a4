"""
Chain event ingestion.

Applies the token-related events of one block: contract deployments, NFT/SFT mints and SIP-019
notifications. After the events, the dynamic token sweep runs and the chain tip moves to the
block. Blocks at or behind the tip are skipped so a replayed block is harmless.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from src.models.job import ContractTarget
from src.models.smart_contract import SipNumber, SmartContract
from src.models.token import TokenType

from .chain_tip import ChainTipService
from .job_queue import JobQueue
from .notification_tracker import MetadataUpdateEvent, NotificationTracker
from .token_processor import ensure_tokens


@dataclass
class ContractDeployEvent:
    principal: str
    sip: SipNumber
    tx_id: str
    tx_index: int = 0
    token_uri: Optional[str] = None
    token_count: Optional[int] = None
    abi: Optional[dict] = None


@dataclass
class TokenMintEvent:
    contract_principal: str
    token_number: int
    tx_id: str
    token_uri: Optional[str] = None


@dataclass
class BlockEvents:
    block_height: int
    index_block_hash: str
    deploys: List[ContractDeployEvent] = field(default_factory=list)
    mints: List[TokenMintEvent] = field(default_factory=list)
    notifications: List[MetadataUpdateEvent] = field(default_factory=list)


@dataclass
class BlockProcessingResult:

    height: int
    applied: bool
    contracts_registered: int = 0
    tokens_minted: int = 0
    notifications_applied: int = 0
    dynamic_tokens_enqueued: int = 0
    processing_time: float = 0.0


class BlockProcessor:
    """Apply block events to the token tables and the job queue"""

    def __init__(self, db_session: Session, job_queue: Optional[JobQueue] = None):
        self.db = db_session
        self.job_queue = job_queue or JobQueue(db_session)
        self.chain_tip = ChainTipService(db_session)
        self.notification_tracker = NotificationTracker(db_session, self.job_queue)
        self.logger = structlog.get_logger()

    def apply_block(self, block: BlockEvents) -> BlockProcessingResult:
        start = time.time()
        tip_height = self.chain_tip.get_block_height()
        if block.block_height <= tip_height:
            self.logger.info("Block already applied", height=block.block_height, chain_tip=tip_height)
            return BlockProcessingResult(height=block.block_height, applied=False)

        result = BlockProcessingResult(height=block.block_height, applied=True)
        try:
            for deploy in block.deploys:
                if self._register_contract(block, deploy):
                    result.contracts_registered += 1
            for mint in block.mints:
                result.tokens_minted += self._apply_mint(mint)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        # Notifications must see the tip of the previous block, so the tip moves last.
        result.notifications_applied = len(self.notification_tracker.apply_notifications(block.notifications))
        result.dynamic_tokens_enqueued = self.notification_tracker.sweep_dynamic_tokens()
        self.chain_tip.advance_block_height(block.block_height)

        result.processing_time = time.time() - start
        self.logger.info(
            "Block applied",
            height=block.block_height,
            contracts=result.contracts_registered,
            mints=result.tokens_minted,
            notifications=result.notifications_applied,
            dynamic_enqueued=result.dynamic_tokens_enqueued,
            processing_time=round(result.processing_time, 3),
        )
        return result

    def _register_contract(self, block: BlockEvents, deploy: ContractDeployEvent) -> bool:
        if self.db.query(SmartContract.id).filter_by(principal=deploy.principal).first() is not None:
            self.logger.debug("Contract already registered", contract=deploy.principal)
            return False
        contract = SmartContract(
            principal=deploy.principal,
            sip=deploy.sip,
            abi=deploy.abi,
            tx_id=deploy.tx_id,
            tx_index=deploy.tx_index,
            block_height=block.block_height,
            index_block_hash=block.index_block_hash,
            token_uri=deploy.token_uri,
            token_count=deploy.token_count,
        )
        self.db.add(contract)
        self.db.flush()
        self.job_queue.enqueue(ContractTarget(contract.id), commit=False)
        self.logger.info("Contract registered", contract=deploy.principal, sip=deploy.sip.value)
        return True

    def _apply_mint(self, mint: TokenMintEvent) -> int:
        contract = self.db.query(SmartContract).filter_by(principal=mint.contract_principal).first()
        if contract is None:
            self.logger.warning("Mint for unknown contract", contract=mint.contract_principal)
            return 0
        token_type = TokenType.from_sip(contract.sip)
        if token_type == TokenType.FT:
            return 0
        created = ensure_tokens(self.db, self.job_queue, contract, token_type, [mint.token_number], mint.token_uri)
        if token_type == TokenType.NFT and (contract.token_count or 0) < mint.token_number:
            contract.token_count = mint.token_number
        return created
