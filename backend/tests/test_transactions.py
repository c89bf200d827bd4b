from datetime import timedelta
from payrecon.models.payment_transaction import PaymentTransaction
from tests.test_utils_seed import ensure_branch, create_transaction, jwt_headers

READ = ['PAY.READ']


def _seed(clock):
    ensure_branch(1); ensure_branch(2)
    create_transaction(receipt='QA0001', amount='100', created_at=clock.now() - timedelta(hours=3))
    create_transaction(receipt='QA0002', amount='250', created_at=clock.now() - timedelta(hours=2))
    create_transaction(status=PaymentTransaction.STATUS_FAILED, checkout_request_id='ws_CO_F1', amount='300',
                       source=PaymentTransaction.SOURCE_STK, created_at=clock.now() - timedelta(hours=1))
    create_transaction(status=PaymentTransaction.STATUS_PENDING, checkout_request_id='ws_CO_P1', amount='400',
                       source=PaymentTransaction.SOURCE_STK, created_at=clock.now())
    create_transaction(receipt='QB0001', branch_id=2, amount='999', created_at=clock.now())


def test_list_is_branch_scoped_and_paginated(client, app_instance, clock):
    _seed(clock)
    with app_instance.app_context():
        headers = jwt_headers(1, READ)
    resp = client.get('/payments/transactions?limit=2', headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['pagination'] == {'total': 4, 'limit': 2, 'offset': 0, 'returned': 2}
    assert all(row['branchId'] == 1 for row in body['data'])
    assert body['data'][0]['phoneNumber'] == '2547****5678'
    page2 = client.get('/payments/transactions?limit=2&offset=2', headers=headers).get_json()
    assert page2['pagination']['returned'] == 2
    seen = {r['id'] for r in body['data']} | {r['id'] for r in page2['data']}
    assert len(seen) == 4


def test_list_filters(client, app_instance, clock):
    _seed(clock)
    with app_instance.app_context():
        headers = jwt_headers(1, READ)
    completed = client.get('/payments/transactions?status=COMPLETED', headers=headers).get_json()
    assert {r['mpesaReceiptNumber'] for r in completed['data']} == {'QA0001', 'QA0002'}
    stk = client.get('/payments/transactions?source=STK', headers=headers).get_json()
    assert {r['status'] for r in stk['data']} == {'FAILED', 'PENDING'}
    start = (clock.now() - timedelta(hours=2, minutes=30)).isoformat()
    end = (clock.now() - timedelta(minutes=30)).isoformat()
    ranged = client.get('/payments/transactions', query_string={'start_date': start, 'end_date': end}, headers=headers).get_json()
    assert [r['amount'] for r in ranged['data']] == ['300.00', '250.00']
    bad = client.get('/payments/transactions?status=DONE', headers=headers)
    assert bad.status_code == 400
    assert bad.get_json()['message'] == 'status invalid'


def test_list_multi_sort(client, app_instance, clock):
    _seed(clock)
    with app_instance.app_context():
        headers = jwt_headers(1, READ)
    resp = client.get('/payments/transactions?sort=-amount', headers=headers)
    assert [r['amount'] for r in resp.get_json()['data']] == ['400.00', '300.00', '250.00', '100.00']
    resp = client.get('/payments/transactions?sort=status,created_at', headers=headers)
    assert [r['status'] for r in resp.get_json()['data']] == ['COMPLETED', 'COMPLETED', 'FAILED', 'PENDING']
    assert client.get('/payments/transactions?sort=phone_number', headers=headers).status_code == 400


def test_list_conditional_requests(client, app_instance, clock):
    _seed(clock)
    with app_instance.app_context():
        headers = jwt_headers(1, READ)
    first = client.get('/payments/transactions?limit=5', headers=headers)
    etag = first.headers.get('ETag')
    assert etag
    second = client.get('/payments/transactions?limit=5', headers={**headers, 'If-None-Match': etag})
    assert second.status_code == 304
    assert second.headers.get('ETag') == etag
    lm = first.headers.get('Last-Modified')
    assert lm
    third = client.get('/payments/transactions?limit=5', headers={**headers, 'If-Modified-Since': lm})
    assert third.status_code == 304


def test_detail_is_branch_scoped(client, app_instance, clock):
    _seed(clock)
    own = create_transaction(receipt='QA0009', created_at=clock.now())
    foreign = create_transaction(receipt='QB0009', branch_id=2, created_at=clock.now())
    with app_instance.app_context():
        headers = jwt_headers(1, READ)
    resp = client.get(f'/payments/transactions/{own.id}', headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['mpesaReceiptNumber'] == 'QA0009'
    resp = client.get(f'/payments/transactions/{foreign.id}', headers=headers)
    assert resp.status_code == 404
    assert resp.get_json()['code'] == 'NOT_FOUND'


def test_stats(client, app_instance, clock):
    _seed(clock)
    with app_instance.app_context():
        headers = jwt_headers(1, READ)
    resp = client.get('/payments/stats', headers=headers)
    assert resp.status_code == 200
    assert resp.get_json() == {
        'totalTransactions': 4,
        'completedTransactions': 2,
        'failedTransactions': 1,
        'pendingTransactions': 1,
        'totalRevenue': '350.00',
        'successRate': '50.00',
    }
    start = (clock.now() - timedelta(hours=1, minutes=30)).isoformat()
    recent = client.get('/payments/stats', query_string={'start_date': start}, headers=headers).get_json()
    assert recent['totalTransactions'] == 2
    assert recent['successRate'] == '0.00'
    assert client.get('/payments/stats?start_date=yesterday', headers=headers).status_code == 400


def test_stats_for_empty_branch(client, app_instance):
    with app_instance.app_context():
        headers = jwt_headers(1, READ, branch_ids=[7])
    body = client.get('/payments/stats', headers=headers).get_json()
    assert body['totalTransactions'] == 0
    assert body['successRate'] == '0.00'
    assert body['totalRevenue'] == '0.00'


def test_read_requires_branch_claim(client, app_instance):
    with app_instance.app_context():
        headers = jwt_headers(1, READ, branch_ids=[])
    assert client.get('/payments/transactions', headers=headers).status_code == 403
