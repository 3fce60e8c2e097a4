from pydantic import BaseModel, Field, field_serializer
from typing import Any, Dict, List, Optional
from decimal import Decimal


class OrmConfig(BaseModel):
    class Config:
        from_attributes = True


class MetadataAttribute(OrmConfig):
    trait_type: str = Field(description="Attribute name")
    value: Any = Field(description="Attribute value")
    display_type: Optional[str] = Field(None, description="How the value should be displayed")


class Metadata(OrmConfig):
    sip: int = Field(description="SIP number the metadata conforms to")
    name: str = Field(description="Token name")
    description: Optional[str] = Field(None, description="Token description")
    image: Optional[str] = Field(None, description="Original image URI")
    cached_image: Optional[str] = Field(None, description="Cached image URL")
    cached_thumbnail_image: Optional[str] = Field(None, description="Cached thumbnail URL")
    attributes: Optional[List[MetadataAttribute]] = Field(None, description="Token attributes")
    properties: Optional[Dict[str, Any]] = Field(None, description="Additional token properties")


class FungibleTokenResponse(OrmConfig):
    name: Optional[str] = Field(None, description="Token name")
    symbol: Optional[str] = Field(None, description="Token symbol")
    decimals: Optional[int] = Field(None, description="Token decimals")
    total_supply: Optional[Decimal] = Field(None, description="Current total supply")
    token_uri: Optional[str] = Field(None, description="Metadata URI declared by the contract")
    metadata: Optional[Metadata] = None

    @field_serializer("total_supply")
    def serialize_supply_to_str(self, v: Optional[Decimal], _info):
        return str(v) if v is not None else None


class NonFungibleTokenResponse(OrmConfig):
    token_uri: Optional[str] = Field(None, description="Metadata URI declared by the contract")
    metadata: Optional[Metadata] = None


class SemiFungibleTokenResponse(OrmConfig):
    token_uri: Optional[str] = Field(None, description="Metadata URI declared by the contract")
    decimals: Optional[int] = Field(None, description="Token decimals")
    total_supply: Optional[Decimal] = Field(None, description="Current total supply")
    metadata: Optional[Metadata] = None

    @field_serializer("total_supply")
    def serialize_supply_to_str(self, v: Optional[Decimal], _info):
        return str(v) if v is not None else None


class ChainTipInfo(BaseModel):
    block_height: int


class ApiStatusResponse(BaseModel):
    server_version: str = Field(description="Running service version")
    status: str = Field(description="Service status")
    chain_tip: Optional[ChainTipInfo] = None
    tokens: Dict[str, int] = Field(default_factory=dict, description="Token counts by type")
    token_contracts: Dict[str, int] = Field(default_factory=dict, description="Contract counts by SIP")
    job_queue: Dict[str, int] = Field(default_factory=dict, description="Job counts by status")


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None


class RefreshRequest(BaseModel):
    contract_id: str = Field(description="Contract principal to refresh")
    token_ids: Optional[List[int]] = Field(None, description="Token numbers to refresh, all tokens when absent")


class RefreshResponse(BaseModel):
    contract_id: str
    enqueued: int
