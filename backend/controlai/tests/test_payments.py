from decimal import Decimal

import pytest

from controlai.models import Payment, ReceiptHistory, ReceiptJob, Sale
from controlai.tests.factories import make_sale


def pay(client, headers, sale_id, amount, method='cash', **extra):
    body = {'saleId': sale_id, 'amount': amount, 'method': method, **extra}
    return client.post('/api/payments', json=body, headers=headers)


def test_payment_returns_pdf_and_history(client, db, sale, cashier_headers):
    r = pay(client, cashier_headers, sale.id, 100, reference='NSU-1')
    assert r.status_code == 200
    assert r.headers['content-type'] == 'application/pdf'
    assert r.content.startswith(b'%PDF')

    payment = db.query(Payment).one()
    assert r.headers['content-disposition'] == f'attachment; filename=receipt-{payment.id}.pdf'
    assert payment.status == 'paid'
    assert payment.reference == 'NSU-1'

    history = db.query(ReceiptHistory).one()
    assert history.payment_id == payment.id
    assert history.receipt_number.startswith('REC')
    assert len(history.receipt_number) == 13
    assert history.qr_code_data.startswith('data:image/png;base64,')
    assert history.verification_url.endswith('/' + history.receipt_number)
    assert history.file_path.endswith(f'{history.receipt_number}.pdf')
    assert history.email_status == 'pending'
    assert r.headers['x-receipt-number'] == history.receipt_number

    job = db.query(ReceiptJob).one()
    assert job.status == 'done'
    assert job.attempts == 1
    assert job.receipt_history_id == history.id


def test_partial_then_full_payment(client, db, sale, cashier_headers):
    assert pay(client, cashier_headers, sale.id, 60).status_code == 200
    db.expire_all()
    assert db.get(Sale, sale.id).status == 'partially_paid'

    assert pay(client, cashier_headers, sale.id, 40, method='pix').status_code == 200
    db.expire_all()
    assert db.get(Sale, sale.id).status == 'paid'

    # Overpayment on a paid sale is accepted and keeps it paid
    assert pay(client, cashier_headers, sale.id, 10).status_code == 200
    db.expire_all()
    assert db.get(Sale, sale.id).status == 'paid'
    assert db.query(Payment).count() == 3
    numbers = {h.receipt_number for h in db.query(ReceiptHistory).all()}
    assert len(numbers) == 3


def test_non_positive_amount_is_rejected(client, db, sale, cashier_headers):
    for amount in (0, -5):
        r = pay(client, cashier_headers, sale.id, amount)
        assert r.status_code == 400
        assert r.json()['success'] is False
        assert r.json()['message'] == 'Valor do pagamento deve ser maior que zero'
    assert db.query(Payment).count() == 0


def test_invalid_method_is_rejected(client, sale, cashier_headers):
    r = pay(client, cashier_headers, sale.id, 10, method='bitcoin')
    assert r.status_code == 400
    assert r.json()['message'].startswith('Método de pagamento inválido')


def test_unknown_sale_is_404(client, cashier_headers):
    r = pay(client, cashier_headers, 9999, 10)
    assert r.status_code == 404
    assert r.json() == {'success': False, 'message': 'Venda não encontrada'}


def test_payment_requires_authentication(client, sale):
    r = client.post('/api/payments', json={'saleId': sale.id, 'amount': 10, 'method': 'cash'})
    assert r.status_code == 401


def test_payment_on_cancelled_sale_is_rejected(client, db, sale, cashier_headers):
    sale.status = 'cancelled'
    db.commit()
    r = pay(client, cashier_headers, sale.id, 10)
    assert r.status_code == 400
    assert r.json()['message'] == 'Não é possível registrar pagamento em venda cancelada'


def test_cancel_payment_recomputes_status(client, db, sale, cashier_headers, admin_headers):
    pay(client, cashier_headers, sale.id, 60)
    payment_id = db.query(Payment).one().id

    # Cashiers cannot cancel
    assert client.patch(f'/api/payments/{payment_id}/cancel', headers=cashier_headers).status_code == 403

    r = client.patch(f'/api/payments/{payment_id}/cancel', headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['data']['status'] == 'cancelled'
    db.expire_all()
    assert db.get(Sale, sale.id).status == 'pending'

    r = client.patch(f'/api/payments/{payment_id}/cancel', headers=admin_headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Pagamento já está cancelado'


def test_cancel_one_of_two_payments_keeps_partial(client, db, sale, cashier_headers, admin_headers):
    pay(client, cashier_headers, sale.id, 60)
    pay(client, cashier_headers, sale.id, 40)
    db.expire_all()
    assert db.get(Sale, sale.id).status == 'paid'

    last = db.query(Payment).order_by(Payment.id.desc()).first()
    client.patch(f'/api/payments/{last.id}/cancel', headers=admin_headers)
    db.expire_all()
    assert db.get(Sale, sale.id).status == 'partially_paid'


def test_list_sale_payments_newest_first(client, db, sale, cashier_headers):
    pay(client, cashier_headers, sale.id, 30)
    pay(client, cashier_headers, sale.id, 20)
    r = client.get(f'/api/payments/sale/{sale.id}', headers=cashier_headers)
    assert r.status_code == 200
    body = r.json()
    assert body['count'] == 2
    assert [Decimal(p['amount']) for p in body['data']] == [Decimal('20.00'), Decimal('30.00')]


def test_email_sent_when_requested(client, db, cashier, cashier_headers, customer_with_email, email_service):
    sale = make_sale(db, cashier, customer=customer_with_email)
    r = pay(client, cashier_headers, sale.id, 100, sendEmail=True)
    assert r.status_code == 200

    history = db.query(ReceiptHistory).one()
    assert history.email_status == 'sent'
    assert history.email_sent_to == 'maria@example.com'
    assert history.email_sent_at is not None
    assert email_service.sent[0][0] == history.receipt_number
    assert email_service.sent[0][2].startswith(b'%PDF')


def test_email_failure_does_not_fail_payment(client, db, cashier, cashier_headers, customer_with_email, email_service):
    email_service.succeed = False
    sale = make_sale(db, cashier, customer=customer_with_email)
    r = pay(client, cashier_headers, sale.id, 100, sendEmail=True)
    assert r.status_code == 200
    assert r.content.startswith(b'%PDF')

    history = db.query(ReceiptHistory).one()
    assert history.email_status == 'failed'
    assert history.email_error == 'Failed to send email'
    db.expire_all()
    assert db.get(Sale, sale.id).status == 'paid'


def test_no_email_without_customer_address(client, db, sale, cashier_headers, email_service):
    assert pay(client, cashier_headers, sale.id, 100, sendEmail=True).status_code == 200
    assert email_service.sent == []
    assert db.query(ReceiptHistory).one().email_status == 'pending'


def test_receipt_number_collision_is_retried(client, db, sale, cashier_headers, receipt_service):
    numbers = iter(['REC2026100001', 'REC2026100001', 'REC2026100002'])
    receipt_service.generate_receipt_number = lambda: next(numbers)

    assert pay(client, cashier_headers, sale.id, 50).status_code == 200
    r = pay(client, cashier_headers, sale.id, 50)
    assert r.status_code == 200
    assert r.headers['x-receipt-number'] == 'REC2026100002'
    assert sorted(h.receipt_number for h in db.query(ReceiptHistory).all()) == ['REC2026100001', 'REC2026100002']


def test_receipt_number_exhaustion_keeps_payment(client, db, sale, cashier_headers, receipt_service):
    receipt_service.generate_receipt_number = lambda: 'REC2026100001'
    assert pay(client, cashier_headers, sale.id, 50).status_code == 200

    r = pay(client, cashier_headers, sale.id, 50)
    assert r.status_code == 400
    body = r.json()
    assert body['message'] == 'Não foi possível gerar um número de recibo único'
    assert body['receiptPending'] is True
    assert db.query(Payment).count() == 2
    assert db.query(ReceiptHistory).count() == 1


def test_receipt_failure_is_queued_and_retried(client, db, sale, cashier_headers, admin_headers, receipt_service):
    original_render = receipt_service.render_pdf

    def broken_render(data):
        raise RuntimeError('render boom')

    receipt_service.render_pdf = broken_render
    r = pay(client, cashier_headers, sale.id, 100)
    assert r.status_code == 400
    body = r.json()
    assert body['message'] == 'render boom'
    assert body['receiptPending'] is True

    # The payment and the sale status survive the receipt failure
    db.expire_all()
    payment = db.query(Payment).one()
    assert body['paymentId'] == payment.id
    assert db.get(Sale, sale.id).status == 'paid'
    assert db.query(ReceiptHistory).count() == 0
    job = db.query(ReceiptJob).one()
    assert job.id == body['receiptJobId']
    assert job.status == 'failed'
    assert job.last_error == 'render boom'

    receipt_service.render_pdf = original_render
    assert client.post('/api/payments/outbox/process', headers=cashier_headers).status_code == 403
    r = client.post('/api/payments/outbox/process', headers=admin_headers)
    assert r.status_code == 200
    assert r.json() == {'success': True, 'processed': 1, 'succeeded': 1, 'failed': 0}

    db.expire_all()
    job = db.query(ReceiptJob).one()
    assert job.status == 'done'
    assert job.attempts == 2
    assert db.query(ReceiptHistory).one().payment_id == payment.id

    # Nothing left to drain
    r = client.post('/api/payments/outbox/process', headers=admin_headers)
    assert r.json()['processed'] == 0


def test_get_payment_receipt_reuses_history(client, db, sale, cashier_headers):
    pay(client, cashier_headers, sale.id, 100)
    payment = db.query(Payment).one()
    history = db.query(ReceiptHistory).one()

    r = client.get(f'/api/payments/{payment.id}/receipt', headers=cashier_headers)
    assert r.status_code == 200
    assert r.content.startswith(b'%PDF')
    assert r.headers['x-receipt-number'] == history.receipt_number
    assert db.query(ReceiptHistory).count() == 1


def test_get_payment_receipt_unknown_payment(client, cashier_headers):
    r = client.get('/api/payments/4242/receipt', headers=cashier_headers)
    assert r.status_code == 404
    assert r.json()['message'] == 'Pagamento não encontrado'


def test_resend_requires_customer_email(client, db, sale, cashier_headers):
    pay(client, cashier_headers, sale.id, 100)
    payment = db.query(Payment).one()
    r = client.post(f'/api/payments/{payment.id}/resend-receipt', headers=cashier_headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Cliente não possui email cadastrado'


def test_resend_updates_email_outcome(client, db, cashier, cashier_headers, customer_with_email, email_service):
    sale = make_sale(db, cashier, customer=customer_with_email)
    pay(client, cashier_headers, sale.id, 100)
    payment = db.query(Payment).one()
    history = db.query(ReceiptHistory).one()

    r = client.post(f'/api/payments/{payment.id}/resend-receipt', headers=cashier_headers)
    assert r.status_code == 200
    assert r.json()['data'] == {'emailSent': True, 'receiptNumber': history.receipt_number}

    db.expire_all()
    history = db.query(ReceiptHistory).one()
    assert history.email_status == 'sent'
    assert history.email_sent_to == 'maria@example.com'

    email_service.succeed = False
    r = client.post(f'/api/payments/{payment.id}/resend-receipt', headers=cashier_headers)
    assert r.json()['data']['emailSent'] is False
    db.expire_all()
    history = db.query(ReceiptHistory).one()
    assert history.email_status == 'failed'
    assert history.email_error == 'Failed to resend email'


def test_outbox_skips_exhausted_jobs(db, sale, cashier, receipt_service, email_service):
    from controlai.services.payment_service import process_pending_receipts, record_payment

    job = record_payment(db, cashier, sale.id, Decimal('100'), 'cash')
    job.status = 'failed'
    job.attempts = 5
    db.commit()

    assert process_pending_receipts(db, receipt_service, email_service, max_attempts=5) == {
        'processed': 0, 'succeeded': 0, 'failed': 0,
    }
    summary = process_pending_receipts(db, receipt_service, email_service, max_attempts=6)
    assert summary == {'processed': 1, 'succeeded': 1, 'failed': 0}
    assert db.query(ReceiptHistory).count() == 1


def test_recompute_leaves_cancelled_sale_alone(db, sale):
    from controlai.services.payment_service import recompute_sale_status

    sale.status = 'cancelled'
    assert recompute_sale_status(db, sale, reset_when_unpaid=True) == 'cancelled'


def test_sub_cent_amount_is_rejected(client, db, sale, cashier_headers):
    r = pay(client, cashier_headers, sale.id, 0.004)
    assert r.status_code == 400
    assert r.json()['message'] == 'Valor do pagamento deve ser maior que zero'
    assert db.query(Payment).count() == 0


def test_record_payment_validates_amount_without_request_layer(db, sale, cashier):
    from controlai.core.errors import BadRequestError
    from controlai.services.payment_service import record_payment

    for amount in (0, Decimal('-5'), '0.004', 'NaN'):
        with pytest.raises(BadRequestError) as exc:
            record_payment(db, cashier, sale.id, amount, 'cash')
        assert exc.value.message == 'Valor do pagamento deve ser maior que zero'

    with pytest.raises(BadRequestError) as exc:
        record_payment(db, cashier, sale.id, 'dez reais', 'cash')
    assert exc.value.message == 'Valor do pagamento deve ser um número'

    assert db.query(Payment).count() == 0
    assert db.query(ReceiptJob).count() == 0


def test_receipt_issued_on_fetch_closes_failed_job(client, db, sale, cashier_headers, admin_headers, receipt_service):
    original_render = receipt_service.render_pdf

    def broken_render(data):
        raise RuntimeError('render boom')

    receipt_service.render_pdf = broken_render
    r = pay(client, cashier_headers, sale.id, 100)
    assert r.status_code == 400
    payment_id = r.json()['paymentId']
    receipt_service.render_pdf = original_render

    r = client.get(f'/api/payments/{payment_id}/receipt', headers=cashier_headers)
    assert r.status_code == 200

    db.expire_all()
    history = db.query(ReceiptHistory).one()
    job = db.query(ReceiptJob).one()
    assert job.status == 'done'
    assert job.receipt_history_id == history.id

    r = client.post('/api/payments/outbox/process', headers=admin_headers)
    assert r.json()['processed'] == 0
    db.expire_all()
    assert db.query(ReceiptHistory).filter(ReceiptHistory.payment_id == payment_id).count() == 1


def test_outbox_job_reuses_existing_receipt(db, sale, cashier, receipt_service, email_service):
    from controlai.services.payment_service import process_pending_receipts, record_payment, run_receipt_job

    job = record_payment(db, cashier, sale.id, Decimal('100'), 'cash')
    first = run_receipt_job(db, job, receipt_service, email_service)

    # A job left open for a payment that already has its receipt
    job.status = 'failed'
    db.commit()

    summary = process_pending_receipts(db, receipt_service, email_service)
    assert summary == {'processed': 1, 'succeeded': 1, 'failed': 0}

    db.expire_all()
    history = db.query(ReceiptHistory).one()
    assert history.receipt_number == first.history.receipt_number
    job = db.query(ReceiptJob).one()
    assert job.status == 'done'
    assert job.receipt_history_id == history.id
