from sqlalchemy import select
from payrecon.models.audit import AuditLog
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.services import audit as audit_mod
from payrecon.services.audit import record_audit
from tests.test_utils_gateway import stk_callback_payload
from tests.test_utils_seed import ensure_branch


def _break_audit_inserts(monkeypatch):
    real = audit_mod.AuditLog

    def broken(**kwargs):
        kwargs['action'] = None  # violates NOT NULL at flush
        return real(**kwargs)
    monkeypatch.setattr(audit_mod, 'AuditLog', broken)


def test_record_audit_writes_entry(session, clock):
    entry = record_audit(session, 7, 'MPESA.TEST', 'PaymentTransaction', 42, {'status': 'PENDING'}, {'status': 'COMPLETED'}, at=clock.now())
    session.commit()
    assert entry is not None
    stored = session.execute(select(AuditLog)).scalar_one()
    assert stored.entity_id == '42'
    assert stored.user_id == 7
    assert stored.created_at == clock.now()
    assert stored.new_value == {'status': 'COMPLETED'}


def test_failed_audit_does_not_block_state_change(client, engine, session, monkeypatch, caplog):
    ensure_branch(1)
    push = engine.push_initiator(session).initiate('0712345678', 1500, 'REF', None, 1, None)
    _break_audit_inserts(monkeypatch)
    with caplog.at_level('ERROR', logger='payrecon.services.audit'):
        resp = client.post('/payments/callback', json=stk_callback_payload(push.checkout_request_id, push.merchant_request_id))
    assert resp.status_code == 200
    tx = session.get(PaymentTransaction, push.transaction_id)
    assert tx.status == PaymentTransaction.STATUS_COMPLETED
    assert tx.mpesa_receipt_number == 'QAB123XYZ'
    actions = [a.action for a in session.execute(select(AuditLog)).scalars().all()]
    assert actions == ['MPESA.PUSH.INITIATED']
    assert 'Audit write failed action=MPESA.CALLBACK.COMPLETED' in caplog.text


def test_failed_audit_returns_none(session, monkeypatch):
    _break_audit_inserts(monkeypatch)
    assert record_audit(session, None, 'MPESA.TEST', 'SALE', 1) is None
    session.commit()
    assert session.execute(select(AuditLog)).scalars().all() == []
