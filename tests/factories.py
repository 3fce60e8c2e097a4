"""Row builders shared by the test suite."""

from datetime import timedelta

from src.models.metadata import MetadataAttribute, MetadataProperty, MetadataRecord
from src.models.smart_contract import SipNumber, SmartContract
from src.models.token import Token, TokenType
from src.utils.time import utcnow

FT_PRINCIPAL = "SP2C2YFP12AJZB4MABJBAJ55XECVS7E4PMMZ89YZR.usda-token"
NFT_PRINCIPAL = "SP497E7RX3233ATBS2AB9G4WTHB63X5PBSP5VGAQ.boomboxes-cycle-12"
SFT_PRINCIPAL = "SP3K8BC0PPEVCV7NZ6QSRWPQ2JE9E5B6N3PA0KBR9.semi-fungible-token"


def make_contract(
    db, principal=NFT_PRINCIPAL, sip=SipNumber.SIP_009, token_uri=None, token_count=None, block_height=1
):
    contract = SmartContract(
        principal=principal,
        sip=sip,
        tx_id="0x" + "ab" * 32,
        tx_index=0,
        block_height=block_height,
        index_block_hash="0x" + "cd" * 32,
        token_uri=token_uri,
        token_count=token_count,
    )
    db.add(contract)
    db.commit()
    return contract


def make_token(db, contract, token_number=1, uri=None, token_type=None, updated_at=None, created_at=None):
    token = Token(
        smart_contract_id=contract.id,
        type=token_type or TokenType.from_sip(contract.sip),
        token_number=token_number,
        uri=uri,
        updated_at=updated_at,
        created_at=created_at or utcnow(),
    )
    db.add(token)
    db.commit()
    return token


def make_metadata(
    db, token, name="Token", locale=None, declared_locale=None, attributes=None, properties=None, updated_at=None
):
    record = MetadataRecord(
        token_id=token.id,
        sip=16,
        l10n_locale=locale,
        declared_locale=declared_locale,
        name=name,
        description=f"{name} description",
        image=f"https://example.com/{name}.png",
        updated_at=updated_at or utcnow(),
    )
    record.attributes = [
        MetadataAttribute(trait_type=trait, value=value, display_type=None)
        for trait, value in (attributes or {}).items()
    ]
    record.properties = [MetadataProperty(name=key, value=value) for key, value in (properties or {}).items()]
    db.add(record)
    db.commit()
    return record


def processed_token(db, contract, token_number=1, name="Token", **metadata_kwargs):
    """A token that went through the pipeline once, with its default metadata record."""
    now = utcnow() - timedelta(seconds=10)
    token = make_token(db, contract, token_number=token_number, updated_at=now)
    make_metadata(db, token, name=name, updated_at=now, **metadata_kwargs)
    return token
