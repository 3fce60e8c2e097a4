from datetime import timedelta

from src.models.chain_tip import ChainTip
from src.services.chain_tip import ChainTipService
from src.utils.time import utcnow


def test_initialize_creates_missing_row(db_session):
    db_session.query(ChainTip).delete()
    db_session.commit()

    tip = ChainTipService(db_session).initialize()

    assert tip.block_height == 0
    assert tip.last_dynamic_token_refresh_at is None


def test_initialize_keeps_existing_row(db_session):
    service = ChainTipService(db_session)
    service.advance_block_height(42)

    assert service.initialize().block_height == 42
    assert db_session.query(ChainTip).count() == 1


def test_block_height_only_moves_forward(db_session):
    service = ChainTipService(db_session)

    assert service.advance_block_height(10) is True
    assert service.advance_block_height(5) is False
    assert service.advance_block_height(10) is False
    db_session.expire_all()
    assert service.get_block_height() == 10


def test_first_dynamic_sweep_is_allowed(db_session):
    service = ChainTipService(db_session)
    now = utcnow()

    assert service.try_begin_dynamic_sweep(now, min_interval=60) == now
    db_session.expire_all()
    assert service.get().last_dynamic_token_refresh_at == now


def test_dynamic_sweep_respects_min_interval(db_session):
    service = ChainTipService(db_session)
    first = utcnow()
    service.try_begin_dynamic_sweep(first, min_interval=60)

    assert service.try_begin_dynamic_sweep(first + timedelta(seconds=30), min_interval=60) is None
    later = first + timedelta(seconds=61)
    assert service.try_begin_dynamic_sweep(later, min_interval=60) == first
