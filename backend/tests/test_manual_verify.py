from datetime import timedelta
from decimal import Decimal
import pytest
from sqlalchemy import select
from payrecon.errors import AmountMismatchError, InvalidTransitionError, NotFoundError, ValidationError
from payrecon.models.audit import AuditLog
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.models.sale import Sale
from payrecon.services.manual_verify import ManualVerifier, normalize_receipt_code
from tests.test_utils_gateway import c2b_payload
from tests.test_utils_seed import ensure_branch, ensure_user, create_sale, create_transaction, jwt_headers, role_headers


def _receive_till_payment(client, receipt='QCD456', amount='1500'):
    ensure_branch(1); ensure_branch(2)
    client.post('/payments/c2b/confirm', json=c2b_payload(receipt, amount=amount))


def test_receipt_code_is_trimmed_and_upper_cased():
    assert normalize_receipt_code('  qcd456 ') == 'QCD456'
    with pytest.raises(ValidationError):
        normalize_receipt_code('QC1')
    with pytest.raises(ValidationError):
        normalize_receipt_code(None)


def test_verify_receipt_in_branch(client, app_instance, engine):
    """Scenario D, success path."""
    _receive_till_payment(client)
    with app_instance.app_context():
        headers = jwt_headers(1, ['PAY.READ'])
    resp = client.post('/payments/verify-receipt', json={'receiptCode': 'qcd456', 'expectedAmount': 1500}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json() == {
        'success': True, 'receiptNumber': 'QCD456', 'amount': '1500.00', 'phoneNumber': '2547****5678',
    }


def test_verify_receipt_from_other_branch_is_not_found(client, app_instance, engine):
    """Scenario D, wrong branch."""
    _receive_till_payment(client)
    with app_instance.app_context():
        headers = jwt_headers(1, ['PAY.READ'], branch_ids=[2])
    resp = client.post('/payments/verify-receipt', json={'receiptCode': 'QCD456', 'expectedAmount': 1500}, headers=headers)
    assert resp.status_code == 404
    body = resp.get_json()
    assert body['success'] is False
    assert body['error'] == 'M-Pesa receipt not found or expired. Please verify the code is correct.'


def test_verify_receipt_amount_mismatch_names_both_amounts(client, app_instance, engine):
    """Scenario D, wrong amount."""
    _receive_till_payment(client)
    with app_instance.app_context():
        headers = jwt_headers(1, ['PAY.READ'])
    resp = client.post('/payments/verify-receipt', json={'receiptCode': 'QCD456', 'expectedAmount': 1900}, headers=headers)
    assert resp.status_code == 400
    body = resp.get_json()
    assert body['success'] is False
    assert body['code'] == 'AMOUNT_MISMATCH'
    assert body['error'] == 'Amount mismatch. Receipt shows KES 1500, but sale total is KES 1900.'


def test_verify_receipt_rejects_bad_input(client, app_instance, engine):
    with app_instance.app_context():
        headers = jwt_headers(1, ['PAY.READ'])
    resp = client.post('/payments/verify-receipt', json={'receiptCode': 'ab', 'expectedAmount': 1500}, headers=headers)
    assert resp.status_code == 400
    assert 'at least 6 characters' in resp.get_json()['error']
    resp = client.post('/payments/verify-receipt', json={'receiptCode': 'QCD456'}, headers=headers)
    assert resp.status_code == 400


def test_lookback_and_tolerance(session, clock):
    create_transaction(receipt='QOLD01', amount='1500', created_at=clock.now() - timedelta(hours=24, seconds=1))
    create_transaction(receipt='QNEW01', amount='1500', created_at=clock.now() - timedelta(hours=24))
    verifier = ManualVerifier(session, clock)
    with pytest.raises(NotFoundError):
        verifier.verify_receipt('QOLD01', 1500, 1)
    assert verifier.verify_receipt('QNEW01', '1501', 1).amount == Decimal('1500.00')
    with pytest.raises(AmountMismatchError):
        verifier.verify_receipt('QNEW01', '1501.01', 1)


def test_verify_receipt_ignores_incomplete_transactions(session, clock):
    create_transaction(receipt='QFAIL1', status=PaymentTransaction.STATUS_FAILED, created_at=clock.now())
    with pytest.raises(NotFoundError):
        ManualVerifier(session, clock).verify_receipt('QFAIL1', 1500, 1)


def test_verify_receipt_does_not_touch_sales(session, clock):
    sale = create_sale('S-10', mpesa_amount=1500, flagged_at=clock.now() - timedelta(minutes=30))
    create_transaction(receipt='QCD456', created_at=clock.now())
    ManualVerifier(session, clock).verify_receipt('QCD456', 1500, 1)
    assert session.get(Sale, sale.id).mpesa_verification_status == Sale.VERIFICATION_PENDING


def test_manager_confirms_flagged_sale(client, app_instance, engine, session):
    user = ensure_user('manager@example.com')
    sale = create_sale('S-11', mpesa_amount=1500, cash_amount=200, flagged_at=engine.clock.now() - timedelta(minutes=20))
    create_transaction(receipt='QCD456', created_at=engine.clock.now() - timedelta(minutes=19))
    headers = role_headers(app_instance, user.id, 'Manager')
    resp = client.post(f'/payments/sales/{sale.id}/verify', json={'receiptCode': 'QCD456'}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()['verification'] == {
        'status': 'VERIFIED', 'flagged': False, 'mpesaCode': 'QCD456', 'verificationMethod': 'MANUAL_MANAGER',
    }
    sale = session.get(Sale, sale.id)
    sale_id = sale.id
    assert sale.verified_by == user.id
    tx = session.execute(select(PaymentTransaction).where(PaymentTransaction.mpesa_receipt_number == 'QCD456')).scalar_one()
    assert tx.sale_id == sale.id
    entry = session.execute(select(AuditLog).where(AuditLog.action == 'MPESA_MANUAL_VERIFIED')).scalar_one()
    assert entry.user_id == user.id
    assert entry.entity_id == str(sale.id)
    assert entry.new_value['mpesaCode'] == 'QCD456'
    assert entry.new_value['verificationMethod'] == 'MANUAL_MANAGER'

    # at most once: resubmitting is an informational no-op, another receipt is rejected
    resp = client.post(f'/payments/sales/{sale_id}/verify', json={'receiptCode': 'qcd456'}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['code'] == 'DUPLICATE_EVENT'
    resp = client.post(f'/payments/sales/{sale_id}/verify', json={'receiptCode': 'QCD999'}, headers=headers)
    assert resp.status_code == 409
    assert len(session.execute(select(AuditLog).where(AuditLog.action == 'MPESA_MANUAL_VERIFIED')).scalars().all()) == 1


def test_admin_method_requires_admin_permission(client, app_instance, engine):
    sale = create_sale('S-12', mpesa_amount=1500, flagged_at=engine.clock.now())
    create_transaction(receipt='QCD456', created_at=engine.clock.now())
    headers = role_headers(app_instance, 1, 'Manager')
    resp = client.post(f'/payments/sales/{sale.id}/verify', json={'receiptCode': 'QCD456', 'method': 'MANUAL_ADMIN'}, headers=headers)
    assert resp.status_code == 403
    headers = role_headers(app_instance, 1, 'Admin')
    resp = client.post(f'/payments/sales/{sale.id}/verify', json={'receiptCode': 'QCD456', 'method': 'MANUAL_ADMIN'}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['verification']['verificationMethod'] == 'MANUAL_ADMIN'


def test_cashier_cannot_confirm(client, app_instance, engine):
    sale = create_sale('S-13', mpesa_amount=1500, flagged_at=engine.clock.now())
    headers = role_headers(app_instance, 1, 'Cashier')
    resp = client.post(f'/payments/sales/{sale.id}/verify', json={'receiptCode': 'QCD456'}, headers=headers)
    assert resp.status_code == 403


def test_receipt_already_bound_to_another_sale_is_rejected(session, clock):
    first = create_sale('S-14', mpesa_amount=1500, flagged_at=clock.now())
    second = create_sale('S-15', mpesa_amount=1500, flagged_at=clock.now())
    create_transaction(receipt='QCD456', created_at=clock.now())
    verifier = ManualVerifier(session, clock)
    verifier.confirm_manual(first.id, 'QCD456', Sale.METHOD_MANUAL_MANAGER, None, 1)
    with pytest.raises(InvalidTransitionError):
        verifier.confirm_manual(second.id, 'QCD456', Sale.METHOD_MANUAL_MANAGER, None, 1)
    assert session.get(Sale, second.id).mpesa_verification_status == Sale.VERIFICATION_PENDING


def test_confirm_manual_checks_sale_branch_and_state(session, clock):
    ensure_branch(2)
    other_branch = create_sale('S-16', branch_id=2, mpesa_amount=1500, flagged_at=clock.now())
    cash_only = create_sale('S-17', cash_amount=1500)
    create_transaction(receipt='QCD456', created_at=clock.now())
    verifier = ManualVerifier(session, clock)
    with pytest.raises(NotFoundError):
        verifier.confirm_manual(other_branch.id, 'QCD456', Sale.METHOD_MANUAL_MANAGER, None, 1)
    with pytest.raises(InvalidTransitionError):
        verifier.confirm_manual(cash_only.id, 'QCD456', Sale.METHOD_MANUAL_MANAGER, None, 1)
    with pytest.raises(ValidationError):
        verifier.confirm_manual(other_branch.id, 'QCD456', Sale.METHOD_AUTOMATIC, None, 2)
