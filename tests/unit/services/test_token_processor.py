from datetime import timedelta

import pytest

from src.config import settings
from src.models.job import ContractTarget, Job, JobStatus, TokenTarget
from src.models.metadata import MetadataRecord
from src.models.smart_contract import SipNumber
from src.models.token import Token, TokenType
from src.services.job_queue import JobQueue
from src.services.metadata_fetcher import FetchResult
from src.services.token_processor import TokenProcessor, ensure_tokens
from src.utils.exceptions import JobIntegrityError, MetadataSizeExceeded, TooManyRequests
from src.utils.time import utcnow
from tests.factories import FT_PRINCIPAL, SFT_PRINCIPAL, make_contract, make_token

URI = "https://meta.example.com/{id}.json"


class FakeFetcher:
    """Serves canned payloads by URL, raising any exception found there instead."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def fetch(self, uri):
        self.calls.append(uri)
        response = self.responses[uri]
        if isinstance(response, Exception):
            raise response
        return FetchResult(payload=response, hostname="meta.example.com", url=uri)


@pytest.fixture
def queue(db_session):
    return JobQueue(db_session)


def run_claimed(db_session, queue, fetcher):
    [job] = queue.claim_next(1)
    return TokenProcessor(db_session, fetcher, queue).process_job(job)


def token_job(db_session, queue, contract, token_number=1, uri=URI):
    token = make_token(db_session, contract, token_number=token_number, uri=uri)
    job = queue.enqueue(TokenTarget(token.id))
    return token, job


def test_token_job_stores_metadata(db_session, queue):
    token, job = token_job(db_session, queue, make_contract(db_session), token_number=7)
    fetcher = FakeFetcher({"https://meta.example.com/7.json": {"name": "Boombox #7", "image": "ipfs://img"}})

    assert run_claimed(db_session, queue, fetcher) == JobStatus.DONE

    assert fetcher.calls == ["https://meta.example.com/7.json"]
    db_session.expire_all()
    assert queue.get_job(job.id).status == JobStatus.DONE
    token = db_session.get(Token, token.id)
    assert token.updated_at is not None
    [record] = token.metadata_records
    assert record.l10n_locale is None
    assert record.name == "Boombox #7"
    assert record.image == "ipfs://img"


def test_localized_payloads_are_fetched(db_session, queue):
    token, _ = token_job(db_session, queue, make_contract(db_session))
    fetcher = FakeFetcher(
        {
            "https://meta.example.com/1.json": {
                "name": "Boombox",
                "localization": {
                    "uri": "https://meta.example.com/{id}-{locale}.json",
                    "default": "en",
                    "locales": ["en", "es"],
                },
            },
            "https://meta.example.com/1-es.json": {"name": "Caja"},
        }
    )

    assert run_claimed(db_session, queue, fetcher) == JobStatus.DONE

    db_session.expire_all()
    records = {r.l10n_locale: r for r in db_session.query(MetadataRecord).filter_by(token_id=token.id)}
    assert set(records) == {None, "es"}
    assert records[None].declared_locale == "en"
    assert records["es"].name == "Caja"


def test_refresh_replaces_records(db_session, queue):
    contract = make_contract(db_session)
    token, _ = token_job(db_session, queue, contract)
    fetcher = FakeFetcher({"https://meta.example.com/1.json": {"name": "Old", "attributes": [{"trait_type": "a", "value": 1}]}})
    run_claimed(db_session, queue, fetcher)

    queue.enqueue(TokenTarget(token.id))
    fetcher.responses["https://meta.example.com/1.json"] = {"name": "New"}
    assert run_claimed(db_session, queue, fetcher) == JobStatus.DONE

    db_session.expire_all()
    [record] = db_session.get(Token, token.id).metadata_records
    assert record.name == "New"
    assert record.attributes == []


def test_fungible_fields_come_from_metadata(db_session, queue):
    contract = make_contract(db_session, principal=FT_PRINCIPAL, sip=SipNumber.SIP_010)
    token, _ = token_job(db_session, queue, contract, uri="https://meta.example.com/usda.json")
    fetcher = FakeFetcher(
        {"https://meta.example.com/usda.json": {"name": "USDA", "symbol": "USDA", "decimals": 6}}
    )

    run_claimed(db_session, queue, fetcher)

    db_session.expire_all()
    token = db_session.get(Token, token.id)
    assert (token.name, token.symbol, token.decimals) == ("USDA", "USDA", 6)
    assert token.total_supply is None


def test_token_without_uri_is_processed_empty(db_session, queue):
    token, job = token_job(db_session, queue, make_contract(db_session), uri=None)
    fetcher = FakeFetcher({})

    assert run_claimed(db_session, queue, fetcher) == JobStatus.DONE

    assert fetcher.calls == []
    db_session.expire_all()
    token = db_session.get(Token, token.id)
    assert token.updated_at is not None
    assert token.metadata_records == []


def test_too_many_requests_penalizes_host(db_session, queue):
    _, job = token_job(db_session, queue, make_contract(db_session))
    error = TooManyRequests("https://meta.example.com/1.json", "meta.example.com", retry_after=300)
    fetcher = FakeFetcher({"https://meta.example.com/1.json": error})

    assert run_claimed(db_session, queue, fetcher) == JobStatus.PENDING

    assert not queue.rate_limiter.check_host("meta.example.com")
    job = queue.get_job(job.id)
    assert job.retry_count == 1
    assert job.updated_at >= utcnow() + timedelta(seconds=290)


def test_rate_limited_host_is_not_contacted(db_session, queue):
    _, job = token_job(db_session, queue, make_contract(db_session))
    [claimed] = queue.claim_next(1)
    retry_after = queue.rate_limiter.penalize_for("meta.example.com", 600)
    fetcher = FakeFetcher({})

    status = TokenProcessor(db_session, fetcher, queue).process_job(claimed)

    assert status == JobStatus.PENDING
    assert fetcher.calls == []
    job = queue.get_job(job.id)
    assert job.status == JobStatus.PENDING
    assert job.retry_count == 0
    assert job.updated_at == retry_after


def test_malformed_metadata_is_retried(db_session, queue):
    token, job = token_job(db_session, queue, make_contract(db_session))
    fetcher = FakeFetcher({"https://meta.example.com/1.json": {"description": "no name"}})

    assert run_claimed(db_session, queue, fetcher) == JobStatus.PENDING
    db_session.expire_all()
    assert db_session.get(Token, token.id).updated_at is None


def test_oversized_metadata_fails_for_good(db_session, queue):
    _, job = token_job(db_session, queue, make_contract(db_session))
    fetcher = FakeFetcher({"https://meta.example.com/1.json": MetadataSizeExceeded("https://meta.example.com/1.json", 10)})

    assert run_claimed(db_session, queue, fetcher) == JobStatus.FAILED
    assert queue.get_job(job.id).status == JobStatus.FAILED


def test_corrupt_job_propagates(db_session, queue):
    processor = TokenProcessor(db_session, FakeFetcher({}), queue)

    with pytest.raises(JobIntegrityError):
        processor.process_job(Job(id=99, token_id=None, smart_contract_id=None, status=JobStatus.QUEUED))


def test_nft_contract_job_creates_tokens(db_session, queue):
    contract = make_contract(db_session, token_uri=URI, token_count=3)
    job = queue.enqueue(ContractTarget(contract.id))

    assert run_claimed(db_session, queue, FakeFetcher({})) == JobStatus.DONE

    db_session.expire_all()
    tokens = db_session.query(Token).filter_by(smart_contract_id=contract.id).order_by(Token.token_number).all()
    assert [t.token_number for t in tokens] == [1, 2, 3]
    assert all(t.uri == URI and t.type == TokenType.NFT for t in tokens)
    assert queue.get_job(job.id).status == JobStatus.DONE
    assert db_session.query(Job).filter(Job.token_id.isnot(None)).count() == 3


def test_ft_contract_job_creates_one_token(db_session, queue):
    contract = make_contract(db_session, principal=FT_PRINCIPAL, sip=SipNumber.SIP_010, token_uri="https://meta.example.com/usda.json")
    queue.enqueue(ContractTarget(contract.id))

    run_claimed(db_session, queue, FakeFetcher({}))

    [token] = db_session.query(Token).filter_by(smart_contract_id=contract.id).all()
    assert token.type == TokenType.FT
    assert token.token_number == 1


def test_sft_contract_job_waits_for_mints(db_session, queue):
    contract = make_contract(db_session, principal=SFT_PRINCIPAL, sip=SipNumber.SIP_013)
    queue.enqueue(ContractTarget(contract.id))

    assert run_claimed(db_session, queue, FakeFetcher({})) == JobStatus.DONE
    assert db_session.query(Token).count() == 0


def test_contract_over_token_limit_is_skipped(db_session, queue, monkeypatch):
    monkeypatch.setattr(settings, "METADATA_MAX_NFT_CONTRACT_TOKEN_COUNT", 2)
    contract = make_contract(db_session, token_uri=URI, token_count=3)
    job = queue.enqueue(ContractTarget(contract.id))

    assert run_claimed(db_session, queue, FakeFetcher({})) == JobStatus.DONE
    assert db_session.query(Token).count() == 0
    assert queue.get_job(job.id).status == JobStatus.DONE


def test_ensure_tokens_skips_existing(db_session, queue):
    contract = make_contract(db_session, token_uri=URI)
    make_token(db_session, contract, token_number=2)

    created = ensure_tokens(db_session, queue, contract, TokenType.NFT, [1, 2, 3], uri="https://other.example.com/x.json")
    db_session.commit()

    assert created == 2
    uris = {t.token_number: t.uri for t in db_session.query(Token).all()}
    assert uris == {1: "https://other.example.com/x.json", 2: None, 3: "https://other.example.com/x.json"}


def test_repeated_locales_are_fetched_once(db_session, queue):
    token, job = token_job(db_session, queue, make_contract(db_session))
    fetcher = FakeFetcher(
        {
            "https://meta.example.com/1.json": {
                "name": "Boombox",
                "localization": {
                    "uri": "https://meta.example.com/{id}-{locale}.json",
                    "default": "en",
                    "locales": ["en", "es", "es"],
                },
            },
            "https://meta.example.com/1-es.json": {"name": "Caja"},
        }
    )

    assert run_claimed(db_session, queue, fetcher) == JobStatus.DONE

    assert fetcher.calls.count("https://meta.example.com/1-es.json") == 1
    db_session.expire_all()
    assert queue.get_job(job.id).status == JobStatus.DONE
    locales = sorted(r.l10n_locale or "" for r in db_session.query(MetadataRecord).filter_by(token_id=token.id))
    assert locales == ["", "es"]


def test_results_are_discarded_when_claim_was_taken_over(db_session, session_factory, queue):
    token, job = token_job(db_session, queue, make_contract(db_session))
    [claimed] = queue.claim_next(1)
    takeover_at = claimed.updated_at + timedelta(seconds=settings.JOB_QUEUE_CLAIM_TIMEOUT + 1)

    class SlowFetcher(FakeFetcher):
        def fetch(self, uri):
            other = session_factory()
            try:
                assert [j.id for j in JobQueue(other).claim_next(1, now=takeover_at)] == [job.id]
            finally:
                other.close()
            return super().fetch(uri)

    fetcher = SlowFetcher({"https://meta.example.com/1.json": {"name": "Late"}})

    status = TokenProcessor(db_session, fetcher, queue).process_job(claimed)

    assert status == JobStatus.QUEUED
    db_session.expire_all()
    job = queue.get_job(job.id)
    assert job.status == JobStatus.QUEUED
    assert job.updated_at == takeover_at
    assert db_session.get(Token, token.id).updated_at is None
    assert db_session.query(MetadataRecord).count() == 0


def test_failure_after_takeover_is_not_recorded(db_session, queue):
    _, job = token_job(db_session, queue, make_contract(db_session))
    [claimed] = queue.claim_next(1)
    takeover_at = claimed.updated_at + timedelta(seconds=settings.JOB_QUEUE_CLAIM_TIMEOUT + 1)

    class TakeoverFetcher(FakeFetcher):
        def fetch(self, uri):
            JobQueue(db_session).claim_next(1, now=takeover_at)
            raise MetadataSizeExceeded(uri, 10)

    status = TokenProcessor(db_session, TakeoverFetcher({}), queue).process_job(claimed)

    assert status == JobStatus.QUEUED
    job = queue.get_job(job.id)
    assert job.status == JobStatus.QUEUED
    assert job.retry_count == 0
