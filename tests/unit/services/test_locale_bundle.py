import pytest

from src.models.smart_contract import SipNumber
from src.services.locale_bundle import LocaleBundleAssembler
from src.utils.exceptions import LocaleNotFound, TokenNotFound, TokenNotProcessed
from src.utils.time import utcnow
from tests.factories import (
    FT_PRINCIPAL,
    NFT_PRINCIPAL,
    make_contract,
    make_metadata,
    make_token,
    processed_token,
)


@pytest.fixture
def assembler(db_session):
    return LocaleBundleAssembler(db_session)


@pytest.fixture
def contract(db_session):
    return make_contract(db_session)


def test_default_bundle(db_session, assembler, contract):
    processed_token(
        db_session,
        contract,
        token_number=5,
        name="Boombox",
        attributes={"color": "red", "level": 3},
        properties={"collection": "Boomboxes", "empty": "", "missing": None, "zero": 0, "tags": []},
    )

    bundle = assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 5)

    assert bundle.token.token_number == 5
    assert bundle.metadata["sip"] == 16
    assert bundle.metadata["name"] == "Boombox"
    assert bundle.metadata["description"] == "Boombox description"
    assert bundle.metadata["image"] == "https://example.com/Boombox.png"
    assert bundle.metadata["attributes"] == [
        {"trait_type": "color", "value": "red", "display_type": None},
        {"trait_type": "level", "value": 3, "display_type": None},
    ]
    assert bundle.metadata["properties"] == {"collection": "Boomboxes", "zero": 0}


def test_bundle_without_attributes_or_properties(db_session, assembler, contract):
    processed_token(db_session, contract, properties={"empty": ""})

    metadata = assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 1).metadata

    assert "attributes" not in metadata
    assert "properties" not in metadata


def test_locale_record_is_a_complete_override(db_session, assembler, contract):
    token = processed_token(
        db_session,
        contract,
        name="Boombox",
        declared_locale="en",
        attributes={"color": "red"},
        properties={"collection": "Boomboxes"},
    )
    make_metadata(db_session, token, name="Caja", locale="es", properties={"coleccion": "Cajas"})

    metadata = assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 1, locale="es").metadata

    assert metadata["name"] == "Caja"
    assert "attributes" not in metadata
    assert metadata["properties"] == {"coleccion": "Cajas"}


def test_declared_locale_resolves_to_default(db_session, assembler, contract):
    processed_token(db_session, contract, name="Boombox", declared_locale="en")

    assert assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 1, locale="en").metadata["name"] == "Boombox"


def test_missing_locale(db_session, assembler, contract):
    processed_token(db_session, contract)

    with pytest.raises(LocaleNotFound):
        assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 1, locale="es-MX")


def test_no_default_record_is_not_processed(db_session, assembler, contract):
    make_token(db_session, contract, updated_at=utcnow())

    with pytest.raises(TokenNotProcessed):
        assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 1)
    with pytest.raises(TokenNotProcessed):
        assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 1, locale="es-MX")


def test_unprocessed_token(db_session, assembler, contract):
    make_token(db_session, contract)

    with pytest.raises(TokenNotProcessed):
        assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 1)


def test_unknown_token(db_session, assembler, contract):
    processed_token(db_session, contract)

    with pytest.raises(TokenNotFound):
        assembler.get_nft_metadata_bundle(NFT_PRINCIPAL, 2)
    with pytest.raises(TokenNotFound):
        assembler.get_nft_metadata_bundle("SP000000000000000000002Q6VF78.unknown", 1)


def test_token_type_must_match(db_session, assembler):
    ft_contract = make_contract(db_session, principal=FT_PRINCIPAL, sip=SipNumber.SIP_010)
    processed_token(db_session, ft_contract, name="USDA")

    assert assembler.get_ft_metadata_bundle(FT_PRINCIPAL).metadata["name"] == "USDA"
    assert assembler.get_token_metadata_bundle(FT_PRINCIPAL).metadata["name"] == "USDA"
    with pytest.raises(TokenNotFound):
        assembler.get_nft_metadata_bundle(FT_PRINCIPAL, 1)
    with pytest.raises(TokenNotFound):
        assembler.get_sft_metadata_bundle(FT_PRINCIPAL, 1)


def test_assemble_requires_default_record(db_session, assembler, contract):
    token = make_token(db_session, contract)

    with pytest.raises(TokenNotProcessed):
        assembler.assemble(token, None, locale="es-MX")
