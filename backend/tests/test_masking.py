from payrecon.utils.masking import mask_phone, redact_payload
from tests.test_utils_gateway import stk_callback_payload, c2b_payload


def test_mask_phone():
    assert mask_phone('254712345678') == '2547****5678'
    assert mask_phone(254712345678) == '2547****5678'
    assert mask_phone('12345') == '*****'
    assert mask_phone(None) == ''


def test_redact_callback_and_c2b_payloads():
    cb = redact_payload(stk_callback_payload('ws_CO_1'))
    items = {i['Name']: i.get('Value') for i in cb['Body']['stkCallback']['CallbackMetadata']['Item']}
    assert items['PhoneNumber'] == '2547****5678'
    assert items['MpesaReceiptNumber'] == 'QAB123XYZ'
    c2b = redact_payload(c2b_payload('QCD456'))
    assert c2b['MSISDN'] == '2547****5678'
    assert c2b['TransID'] == 'QCD456'


def test_redact_leaves_original_untouched():
    payload = c2b_payload('QCD456')
    redact_payload(payload)
    assert payload['MSISDN'] == '254712345678'
    assert redact_payload(None) is None
