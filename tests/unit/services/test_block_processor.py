import pytest

from src.models.job import Job, JobStatus
from src.models.notification import Notification, UpdateMode
from src.models.smart_contract import SipNumber, SmartContract
from src.models.token import Token
from src.services.block_processor import BlockEvents, BlockProcessor, ContractDeployEvent, TokenMintEvent
from src.services.chain_tip import ChainTipService
from src.services.notification_tracker import MetadataUpdateEvent
from tests.factories import NFT_PRINCIPAL, SFT_PRINCIPAL

URI = "https://meta.example.com/{id}.json"


@pytest.fixture
def processor(db_session):
    return BlockProcessor(db_session)


def block(height, **events):
    return BlockEvents(block_height=height, index_block_hash=f"0x{height:064x}", **events)


def deploy(principal=NFT_PRINCIPAL, sip=SipNumber.SIP_009, **kwargs):
    return ContractDeployEvent(principal=principal, sip=sip, tx_id="0x" + "11" * 32, token_uri=URI, **kwargs)


def test_deploy_registers_contract_and_enqueues_job(db_session, processor):
    result = processor.apply_block(block(5, deploys=[deploy(token_count=10)]))

    assert result.applied is True
    assert result.contracts_registered == 1
    contract = db_session.query(SmartContract).filter_by(principal=NFT_PRINCIPAL).one()
    assert contract.block_height == 5
    assert contract.token_uri == URI
    [job] = db_session.query(Job).all()
    assert job.smart_contract_id == contract.id
    assert job.status == JobStatus.PENDING
    assert ChainTipService(db_session).get_block_height() == 5


def test_replayed_block_is_skipped(db_session, processor):
    processor.apply_block(block(5, deploys=[deploy()]))

    result = processor.apply_block(block(5, deploys=[deploy(principal=SFT_PRINCIPAL, sip=SipNumber.SIP_013)]))

    assert result.applied is False
    assert db_session.query(SmartContract).count() == 1


def test_duplicate_deploy_is_ignored(db_session, processor):
    processor.apply_block(block(5, deploys=[deploy()]))

    result = processor.apply_block(block(6, deploys=[deploy()]))

    assert result.contracts_registered == 0
    assert db_session.query(SmartContract).count() == 1


def test_mints_create_tokens(db_session, processor):
    processor.apply_block(block(5, deploys=[deploy(), deploy(principal=SFT_PRINCIPAL, sip=SipNumber.SIP_013)]))

    result = processor.apply_block(
        block(
            6,
            mints=[
                TokenMintEvent(contract_principal=NFT_PRINCIPAL, token_number=4, tx_id="0x01"),
                TokenMintEvent(
                    contract_principal=SFT_PRINCIPAL,
                    token_number=2,
                    tx_id="0x02",
                    token_uri="https://sft.example.com/2.json",
                ),
                TokenMintEvent(contract_principal="SP000000000000000000002Q6VF78.unknown", token_number=1, tx_id="0x03"),
            ],
        )
    )

    assert result.tokens_minted == 2
    nft = db_session.query(SmartContract).filter_by(principal=NFT_PRINCIPAL).one()
    assert nft.token_count == 4
    uris = {token.token_number: token.uri for token in db_session.query(Token).all()}
    assert uris == {4: URI, 2: "https://sft.example.com/2.json"}
    assert db_session.query(Job).filter(Job.token_id.isnot(None)).count() == 2


def test_notifications_are_applied_before_tip_moves(db_session, processor):
    processor.apply_block(block(5, deploys=[deploy()], mints=[TokenMintEvent(NFT_PRINCIPAL, 1, "0x01")]))
    db_session.query(Job).update({"status": JobStatus.DONE})
    db_session.commit()

    notification = MetadataUpdateEvent(
        contract_principal=NFT_PRINCIPAL,
        block_height=6,
        index_block_hash=f"0x{6:064x}",
        tx_id="0x02",
        tx_index=0,
        event_index=0,
        update_mode=UpdateMode.DYNAMIC,
        ttl=3600,
    )
    result = processor.apply_block(block(6, notifications=[notification]))

    assert result.notifications_applied == 1
    assert db_session.query(Notification).count() == 1
    assert db_session.query(Job).filter(Job.status == JobStatus.PENDING).count() == 1
    assert ChainTipService(db_session).get_block_height() == 6
