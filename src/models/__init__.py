from .base import Base
from .smart_contract import SmartContract, SipNumber
from .token import Token, TokenType
from .metadata import MetadataRecord, MetadataAttribute, MetadataProperty
from .job import Job, JobStatus, JobTarget, TokenTarget, ContractTarget
from .rate_limited_host import RateLimitedHost
from .chain_tip import ChainTip
from .notification import Notification, FrozenToken, UpdateMode

__all__ = [
    "Base",
    "SmartContract",
    "SipNumber",
    "Token",
    "TokenType",
    "MetadataRecord",
    "MetadataAttribute",
    "MetadataProperty",
    "Job",
    "JobStatus",
    "JobTarget",
    "TokenTarget",
    "ContractTarget",
    "RateLimitedHost",
    "ChainTip",
    "Notification",
    "FrozenToken",
    "UpdateMode",
]
