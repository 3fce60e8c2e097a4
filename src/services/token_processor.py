"""
Process claimed jobs.

Contract jobs materialize the tokens of a newly deployed contract and enqueue them. Token jobs fetch
metadata for one token and replace its stored records. The fetch happens with no open transaction;
storing the records, stamping the token and completing the job are a single commit, so a crash in
between leaves the job queued and reclaimable.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from src.config import settings
from src.models.job import Job, JobStatus, TokenTarget
from src.models.metadata import MetadataAttribute, MetadataProperty, MetadataRecord
from src.models.smart_contract import SmartContract
from src.models.token import Token, TokenType
from src.utils.exceptions import (
    ClaimLost,
    ContractNotFound,
    HostRateLimited,
    IndexerError,
    InvalidJobTarget,
    JobIntegrityError,
)
from src.utils.time import utcnow
from src.utils.uri import fetchable_hostname, token_specific_uri

from .job_queue import JobQueue
from .metadata_fetcher import MetadataFetcher
from .metadata_parser import ParsedMetadata, RawMetadataLocale, get_localization, parse_metadata_locales
from .rate_limiter import HostRateLimiter


def ensure_tokens(
    db: Session,
    job_queue: JobQueue,
    contract: SmartContract,
    token_type: TokenType,
    token_numbers: Iterable[int],
    uri: Optional[str] = None,
) -> int:
    """Create the missing tokens of a contract and enqueue a job for each. Does not commit."""
    wanted = list(token_numbers)
    existing = {
        number
        for (number,) in db.query(Token.token_number)
        .filter(Token.smart_contract_id == contract.id)
        .all()
    }
    tokens = [
        Token(
            smart_contract_id=contract.id,
            type=token_type,
            token_number=number,
            uri=uri or contract.token_uri,
        )
        for number in wanted
        if number not in existing
    ]
    if not tokens:
        return 0
    db.add_all(tokens)
    db.flush()
    for token in tokens:
        job_queue.enqueue(TokenTarget(token.id), commit=False)
    return len(tokens)


class TokenProcessor:
    def __init__(
        self,
        db_session: Session,
        fetcher: MetadataFetcher,
        job_queue: Optional[JobQueue] = None,
    ):
        self.db = db_session
        self.fetcher = fetcher
        self.job_queue = job_queue or JobQueue(db_session)
        self.rate_limiter: HostRateLimiter = self.job_queue.rate_limiter
        self.logger = structlog.get_logger()

    def process_job(self, job: Job) -> JobStatus:
        """
        Run a claimed job to completion and settle it.

        Returns the job's resulting status, or `queued` when another worker took the claim over
        meanwhile. Invariant violations on the job row propagate.
        """
        target = job.target
        job_id = job.id
        claimed_at = job.updated_at
        try:
            if isinstance(target, TokenTarget):
                self.process_token(job_id, target.token_id, claimed_at)
            else:
                self.process_contract(job_id, target.smart_contract_id, claimed_at)
            return JobStatus.DONE
        except (JobIntegrityError, InvalidJobTarget):
            self.db.rollback()
            raise
        except ClaimLost:
            self.db.rollback()
            self.logger.warning("Job claim lost, results discarded", job_id=job_id)
            return JobStatus.QUEUED
        except HostRateLimited as e:
            # Nothing was sent to the host, so this is not an attempt.
            self.db.rollback()
            self.job_queue.release(job_id, e.retry_after_at, claimed_at)
            self.logger.info("Job released, host rate limited", job_id=job_id, hostname=e.hostname)
            return JobStatus.PENDING
        except Exception as e:
            self.db.rollback()
            return self._settle_failure(job_id, target, e, claimed_at)

    def process_token(self, job_id: int, token_id: int, claimed_at: Optional[datetime] = None) -> None:
        token = self.db.get(Token, token_id)
        if token is None:
            raise IndexerError(f"Token {token_id} not found")

        raw_locales: List[RawMetadataLocale] = []
        if token.uri:
            uri = token_specific_uri(token.uri, token.token_number)
            hostname = fetchable_hostname(uri)
            if hostname and not self.rate_limiter.check_host(hostname):
                raise HostRateLimited(hostname, self.rate_limiter.get_retry_after(hostname) or utcnow())
            token_number = token.token_number
            # No transaction stays open while fetching.
            self.db.commit()
            raw_locales = self._fetch_locales(uri, token_number)

        parsed = parse_metadata_locales(raw_locales) if raw_locales else []
        token = self.db.get(Token, token_id)
        if token is None:
            raise IndexerError(f"Token {token_id} was deleted while fetching")
        now = utcnow()
        self._replace_metadata(token, parsed, now)
        if raw_locales and token.type == TokenType.FT:
            self._apply_fungible_fields(token, raw_locales[0].payload)
        token.updated_at = now
        self._complete(job_id, claimed_at)
        self.db.commit()

        self.logger.info(
            "Token metadata processed",
            token_id=token_id,
            token_number=token.token_number,
            locales=[record.locale or "default" for record in parsed],
        )

    def process_contract(self, job_id: int, smart_contract_id: int, claimed_at: Optional[datetime] = None) -> None:
        contract = self.db.get(SmartContract, smart_contract_id)
        if contract is None:
            raise ContractNotFound(f"Smart contract {smart_contract_id} not found")

        token_type = TokenType.from_sip(contract.sip)
        if token_type == TokenType.FT:
            token_count = 1
        elif token_type == TokenType.NFT:
            token_count = contract.token_count or 0
        else:
            # SFT tokens arrive through mint events.
            token_count = 0

        created = 0
        if token_count > settings.METADATA_MAX_NFT_CONTRACT_TOKEN_COUNT:
            self.logger.warning(
                "Contract token count exceeds limit, tokens not enqueued",
                contract=contract.principal,
                token_count=token_count,
                limit=settings.METADATA_MAX_NFT_CONTRACT_TOKEN_COUNT,
            )
        elif token_count > 0:
            created = ensure_tokens(self.db, self.job_queue, contract, token_type, range(1, token_count + 1))
            contract.token_count = token_count

        self._complete(job_id, claimed_at)
        self.db.commit()
        self.logger.info(
            "Smart contract processed",
            contract=contract.principal,
            sip=contract.sip.value,
            tokens_created=created,
        )

    def _fetch_locales(self, uri: str, token_number: int) -> List[RawMetadataLocale]:
        default = self.fetcher.fetch(uri)
        raw_locales = [RawMetadataLocale(payload=default.payload, uri=uri, is_default=True)]

        localization = get_localization(default.payload)
        if localization is None:
            return raw_locales
        raw_locales[0].locale = localization.default
        # Remote lists may repeat a locale.
        for locale in dict.fromkeys(localization.locales):
            if locale == localization.default:
                continue
            locale_uri = token_specific_uri(localization.uri, token_number, locale)
            result = self.fetcher.fetch(locale_uri)
            raw_locales.append(RawMetadataLocale(payload=result.payload, uri=locale_uri, locale=locale))
        return raw_locales

    def _replace_metadata(self, token: Token, parsed: List[ParsedMetadata], now) -> None:
        token.metadata_records.clear()
        self.db.flush()

        for item in parsed:
            record = MetadataRecord(
                sip=16,
                l10n_locale=item.locale,
                l10n_uri=item.uri,
                declared_locale=item.declared_locale,
                name=item.name,
                description=item.description,
                image=item.image,
                created_at=now,
                updated_at=now,
            )
            record.attributes = [
                MetadataAttribute(
                    trait_type=attribute.trait_type,
                    value=attribute.value,
                    display_type=attribute.display_type,
                )
                for attribute in item.attributes
            ]
            record.properties = [MetadataProperty(name=name, value=value) for name, value in item.properties.items()]
            token.metadata_records.append(record)
        self.db.flush()

    def _apply_fungible_fields(self, token: Token, payload: Dict[str, Any]) -> None:
        """Fill fungible token fields the metadata declares and the token does not have yet."""
        if token.name is None and isinstance(payload.get("name"), str):
            token.name = payload["name"]
        if token.symbol is None and isinstance(payload.get("symbol"), str):
            token.symbol = payload["symbol"]
        decimals = payload.get("decimals")
        if token.decimals is None and isinstance(decimals, int) and not isinstance(decimals, bool):
            token.decimals = decimals

    def _complete(self, job_id: int, claimed_at: Optional[datetime]) -> None:
        if not self.job_queue.complete(job_id, claimed_at, commit=False):
            raise ClaimLost(f"Job {job_id} is no longer held by this worker")

    def _settle_failure(self, job_id: int, target, error: Exception, claimed_at: Optional[datetime]) -> JobStatus:
        decision = self.job_queue.error_handler.classify(error, {"job_id": job_id, "target": repr(target)})
        if decision.penalize_hostname:
            self.rate_limiter.penalize_for(decision.penalize_hostname, decision.penalize_seconds, commit=False)
        return self.job_queue.fail(
            job_id, permanent=decision.permanent, retry_after=decision.retry_after, claimed_at=claimed_at
        )
