"""
Assemble API metadata bundles from stored metadata records.

A locale record is a complete override of the default record, never a patch: base fields,
attributes and properties all come from whichever single record the request resolves to.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session, selectinload

from src.models.metadata import MetadataRecord
from src.models.smart_contract import SmartContract
from src.models.token import Token, TokenType
from src.utils.exceptions import LocaleNotFound, TokenNotFound, TokenNotProcessed


@dataclass
class TokenMetadataBundle:
    token: Token
    metadata: Dict[str, Any]


def _has_value(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


class LocaleBundleAssembler:
    """Resolve the metadata record for a request and shape it for the API"""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.logger = structlog.get_logger()

    def get_ft_metadata_bundle(self, principal: str, locale: Optional[str] = None) -> TokenMetadataBundle:
        return self.get_token_metadata_bundle(principal, 1, locale, token_type=TokenType.FT)

    def get_nft_metadata_bundle(
        self, principal: str, token_number: int, locale: Optional[str] = None
    ) -> TokenMetadataBundle:
        return self.get_token_metadata_bundle(principal, token_number, locale, token_type=TokenType.NFT)

    def get_sft_metadata_bundle(
        self, principal: str, token_number: int, locale: Optional[str] = None
    ) -> TokenMetadataBundle:
        return self.get_token_metadata_bundle(principal, token_number, locale, token_type=TokenType.SFT)

    def get_token_metadata_bundle(
        self,
        principal: str,
        token_number: Optional[int] = None,
        locale: Optional[str] = None,
        token_type: Optional[TokenType] = None,
    ) -> TokenMetadataBundle:
        """
        Load a token and its records and assemble the bundle.

        Raises:
            TokenNotFound: unknown contract or token, or a token of another type
            TokenNotProcessed: the token has no default metadata yet
            LocaleNotFound: the requested locale has no record
        """
        token_number = 1 if token_number is None else token_number
        query = (
            self.db.query(Token)
            .join(SmartContract, Token.smart_contract_id == SmartContract.id)
            .filter(SmartContract.principal == principal, Token.token_number == token_number)
        )
        if token_type is not None:
            query = query.filter(Token.type == token_type)
        token = query.first()
        if token is None:
            raise TokenNotFound()
        if not token.is_processed():
            raise TokenNotProcessed()

        default_record = self._load_record(token.id, None)
        locale_record = None
        if locale and default_record is not None and default_record.declared_locale != locale:
            locale_record = self._load_record(token.id, locale)
        return TokenMetadataBundle(
            token=token,
            metadata=self.assemble(token, default_record, locale_record, locale),
        )

    def assemble(
        self,
        token: Token,
        default_record: Optional[MetadataRecord],
        locale_record: Optional[MetadataRecord] = None,
        locale: Optional[str] = None,
    ) -> Dict[str, Any]:
        if default_record is None:
            raise TokenNotProcessed()

        record = default_record
        if locale and locale != default_record.declared_locale:
            if locale_record is None:
                raise LocaleNotFound(f"Locale {locale} not found")
            record = locale_record

        metadata: Dict[str, Any] = {
            "sip": record.sip,
            "name": record.name,
            "description": record.description,
            "image": record.image,
            "cached_image": record.cached_image,
            "cached_thumbnail_image": record.cached_thumbnail_image,
        }
        if record.attributes:
            metadata["attributes"] = [
                {
                    "trait_type": attribute.trait_type,
                    "value": attribute.value,
                    "display_type": attribute.display_type,
                }
                for attribute in record.attributes
            ]
        properties = {prop.name: prop.value for prop in record.properties if _has_value(prop.value)}
        if properties:
            metadata["properties"] = properties
        return metadata

    def _load_record(self, token_id: int, locale: Optional[str]) -> Optional[MetadataRecord]:
        query = (
            self.db.query(MetadataRecord)
            .options(selectinload(MetadataRecord.attributes), selectinload(MetadataRecord.properties))
            .filter(MetadataRecord.token_id == token_id)
        )
        if locale is None:
            query = query.filter(MetadataRecord.l10n_locale.is_(None))
        else:
            query = query.filter(MetadataRecord.l10n_locale == locale)
        return query.first()
