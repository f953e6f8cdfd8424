from decimal import Decimal

from controlai.models import Product, Sale


def test_create_sale_decrements_stock(client, db, product, cashier_headers):
    r = client.post('/api/sales/', json={
        'items': [{'product_id': product.id, 'quantity': 2, 'discount': '5.00'}],
        'discount': '10.00',
        'tax': '2.50',
    }, headers=cashier_headers)
    assert r.status_code == 200
    body = r.json()
    assert body['status'] == 'pending'
    assert Decimal(body['subtotal']) == Decimal('95.00')
    assert Decimal(body['total']) == Decimal('87.50')
    assert body['items'][0]['name'] == 'Camiseta'

    db.expire_all()
    assert db.get(Product, product.id).stock == 8


def test_insufficient_stock_rolls_back(client, db, product, cashier_headers):
    other = Product(name='Boné', price=Decimal('30.00'), stock=1)
    db.add(other)
    db.commit()

    r = client.post('/api/sales/', json={'items': [
        {'product_id': product.id, 'quantity': 3},
        {'product_id': other.id, 'quantity': 2},
    ]}, headers=cashier_headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Estoque insuficiente para o produto Boné'

    db.expire_all()
    assert db.get(Product, product.id).stock == 10
    assert db.query(Sale).count() == 0


def test_sale_requires_items(client, cashier_headers):
    r = client.post('/api/sales/', json={'items': []}, headers=cashier_headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'A venda deve conter ao menos um item'


def test_unknown_product_and_customer(client, product, cashier_headers):
    r = client.post('/api/sales/', json={'items': [{'product_id': 999, 'quantity': 1}]}, headers=cashier_headers)
    assert r.status_code == 404
    assert r.json()['message'] == 'Produto 999 não encontrado'

    r = client.post('/api/sales/', json={
        'items': [{'product_id': product.id, 'quantity': 1}],
        'customer_id': 999,
    }, headers=cashier_headers)
    assert r.status_code == 404
    assert r.json()['message'] == 'Cliente não encontrado'


def test_zero_quantity_is_rejected(client, product, cashier_headers):
    r = client.post('/api/sales/', json={'items': [{'product_id': product.id, 'quantity': 0}]}, headers=cashier_headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Quantidade deve ser maior que zero'


def test_cancel_sale_restores_stock(client, db, product, cashier_headers, admin_headers):
    sale_id = client.post('/api/sales/', json={
        'items': [{'product_id': product.id, 'quantity': 4}],
    }, headers=cashier_headers).json()['id']

    assert client.patch(f'/api/sales/{sale_id}/cancel', headers=cashier_headers).status_code == 403

    r = client.patch(f'/api/sales/{sale_id}/cancel', headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['status'] == 'cancelled'
    db.expire_all()
    assert db.get(Product, product.id).stock == 10

    r = client.patch(f'/api/sales/{sale_id}/cancel', headers=admin_headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Venda já está cancelada'


def test_get_and_list_sales(client, product, cashier_headers):
    sale_id = client.post('/api/sales/', json={
        'items': [{'product_id': product.id, 'quantity': 1}],
    }, headers=cashier_headers).json()['id']

    r = client.get(f'/api/sales/{sale_id}', headers=cashier_headers)
    assert r.status_code == 200
    assert r.json()['id'] == sale_id

    r = client.get('/api/sales/', params={'status': 'pending'}, headers=cashier_headers)
    assert [s['id'] for s in r.json()] == [sale_id]
    r = client.get('/api/sales/', params={'status': 'paid'}, headers=cashier_headers)
    assert r.json() == []

    r = client.get('/api/sales/999', headers=cashier_headers)
    assert r.status_code == 404
    assert r.json()['message'] == 'Venda não encontrada'
