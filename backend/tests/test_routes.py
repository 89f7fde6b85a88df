# Overview: Pytest coverage for the HTTP surface: tenant header, status codes, CSV export.

from decimal import Decimal

from conftest import adjustment_item, business_headers, set_stock


class TestTenantHeader:

    def test_missing_header_is_400(self, client, db_session):
        response = client.get('/api/reports/stock-valuation')
        assert response.status_code == 400

    def test_unknown_business_is_404(self, client, db_session):
        response = client.get('/api/reports/stock-valuation', headers=business_headers(9999))
        assert response.status_code == 404

    def test_inactive_business_is_404(self, client, db_session, business):
        business.is_active = False
        db_session.commit()
        response = client.get('/api/reports/stock-valuation', headers=business_headers(business.id))
        assert response.status_code == 404


def test_health(client, db_session):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.json['status'] == 'healthy'


class TestAdjustmentRoutes:

    def test_create_adjustment(self, client, business, location, dozen, variation):
        response = client.post(
            '/api/adjustments',
            json={'items': [adjustment_item(variation, location, dozen, 3)]},
            headers=business_headers(business.id),
        )
        assert response.status_code == 201
        body = response.json
        assert body['success'] is True
        assert Decimal(body['stock_updates'][0]['new_stock']) == Decimal('36')

        stock = client.get(
            f'/api/stock?variation_id={variation.id}&location_id={location.id}',
            headers=business_headers(business.id),
        )
        assert stock.status_code == 200
        assert Decimal(stock.json['qty_available']) == Decimal('36')

    def test_empty_batch_is_200(self, client, business):
        response = client.post('/api/adjustments', json={'items': []}, headers=business_headers(business.id))
        assert response.status_code == 200
        assert response.json['transaction_id'] is None

    def test_validation_error_is_400(self, client, business, location, pieces, variation):
        item = adjustment_item(variation, location, pieces, 1, reason='')
        response = client.post('/api/adjustments', json={'items': [item]}, headers=business_headers(business.id))
        assert response.status_code == 400
        assert 'reason' in response.json['error']

    def test_unknown_variation_is_404(self, client, business, location, pieces, variation):
        item = adjustment_item(variation, location, pieces, 1)
        item['variation_id'] = 123456
        response = client.post('/api/adjustments', json={'items': [item]}, headers=business_headers(business.id))
        assert response.status_code == 404

    def test_draft_complete_and_conflict(self, client, business, location, pieces, variation):
        headers = business_headers(business.id)
        draft = client.post(
            '/api/adjustments',
            json={'status': 'draft', 'items': [adjustment_item(variation, location, pieces, 2)]},
            headers=headers,
        )
        txn_id = draft.json['transaction_id']

        listed = client.get('/api/adjustments?status=draft', headers=headers)
        assert listed.json['meta']['total'] == 1

        first = client.post(f'/api/adjustments/{txn_id}/complete', headers=headers)
        assert first.status_code == 200
        second = client.post(f'/api/adjustments/{txn_id}/complete', headers=headers)
        assert second.status_code == 409

        detail = client.get(f'/api/adjustments/{txn_id}', headers=headers)
        assert detail.status_code == 200
        assert detail.json['status'] == 'final'

    def test_reject_policy_is_400(self, client, business, location, pieces, variation):
        set_stock(variation.id, location.id, 1)
        response = client.post(
            '/api/adjustments',
            json={
                'overdraft_policy': 'reject',
                'items': [adjustment_item(variation, location, pieces, 5, adjustment_type='decrease')],
            },
            headers=business_headers(business.id),
        )
        assert response.status_code == 400


class TestLedgerAndTransferRoutes:

    def test_purchase_sale_transfer_and_reports(self, client, business, location, back_room, pieces, variation):
        headers = business_headers(business.id)

        purchase = client.post(
            '/api/purchases',
            json={
                'location_id': location.id,
                'date': '2024-03-01',
                'lines': [{'variation_id': variation.id, 'quantity': 10, 'unit_id': pieces.id, 'purchase_price': '60'}],
            },
            headers=headers,
        )
        assert purchase.status_code == 201

        sale = client.post(
            '/api/sales',
            json={
                'location_id': location.id,
                'date': '2024-03-02',
                'lines': [{'variation_id': variation.id, 'quantity': 2, 'unit_id': pieces.id, 'unit_price': '100'}],
            },
            headers=headers,
        )
        assert sale.status_code == 201

        transfer = client.post(
            '/api/transfers',
            json={
                'from_location_id': location.id,
                'to_location_id': back_room.id,
                'items': [{'variation_id': variation.id, 'quantity': 3, 'unit_id': pieces.id}],
            },
            headers=headers,
        )
        assert transfer.status_code == 201

        profit = client.get('/api/reports/profit-margin?date_from=2024-03-01&date_to=2024-03-31', headers=headers)
        assert profit.status_code == 200
        assert Decimal(profit.json['summary']['total_profit']) == Decimal('80')

        valuation = client.get('/api/reports/stock-valuation', headers=headers)
        assert Decimal(valuation.json['summary']['total_value']) == Decimal('480')

        top = client.get('/api/reports/top-products?limit=5&date_from=2024-03-01&date_to=2024-03-31', headers=headers)
        assert top.status_code == 200
        assert len(top.json['items']) == 1

    def test_oversell_is_400(self, client, business, location, pieces, variation):
        response = client.post(
            '/api/sales',
            json={
                'location_id': location.id,
                'lines': [{'variation_id': variation.id, 'quantity': 1, 'unit_id': pieces.id, 'unit_price': '10'}],
            },
            headers=business_headers(business.id),
        )
        assert response.status_code == 400

    def test_finalize_draft_purchase(self, client, business, location, pieces, variation):
        headers = business_headers(business.id)
        draft = client.post(
            '/api/purchases',
            json={
                'location_id': location.id,
                'status': 'draft',
                'lines': [{'variation_id': variation.id, 'quantity': 4, 'unit_id': pieces.id, 'purchase_price': '5'}],
            },
            headers=headers,
        )
        txn_id = draft.json['id']
        response = client.post(f'/api/transactions/{txn_id}/finalize', headers=headers)
        assert response.status_code == 200
        again = client.post(f'/api/transactions/{txn_id}/finalize', headers=headers)
        assert again.status_code == 409

    def test_invalid_top_limit_is_400(self, client, business):
        response = client.get('/api/reports/top-products?limit=0', headers=business_headers(business.id))
        assert response.status_code == 400


class TestExportRoutes:

    def test_csv_ledger_export(self, client, business, location, pieces, variation):
        headers = business_headers(business.id)
        client.post(
            '/api/purchases',
            json={
                'location_id': location.id,
                'date': '2024-03-01',
                'lines': [{'variation_id': variation.id, 'quantity': 2, 'unit_id': pieces.id, 'purchase_price': '7'}],
            },
            headers=headers,
        )

        response = client.get('/api/reports/ledger-export?format=csv', headers=headers)
        assert response.status_code == 200
        assert response.mimetype == 'text/csv'
        lines = response.get_data(as_text=True).strip().splitlines()
        assert lines[0] == 'date,type,amount,description,reference'
        assert len(lines) == 2
        assert ',purchase,' in lines[1]

    def test_report_export_json(self, client, business, location, pieces, variation):
        set_stock(variation.id, location.id, 3)
        response = client.get('/api/reports/stock-valuation/export', headers=business_headers(business.id))
        assert response.status_code == 200
        assert response.json['columns'] == ['date', 'type', 'amount', 'description', 'reference']
        assert len(response.json['rows']) == 1

    def test_unknown_report_export_is_404(self, client, business):
        response = client.get('/api/reports/nope/export', headers=business_headers(business.id))
        assert response.status_code == 404

    def test_bad_format_is_400(self, client, business):
        response = client.get('/api/reports/ledger-export?format=xml', headers=business_headers(business.id))
        assert response.status_code == 400


class TestLookupRoutes:

    def test_sale_list_and_detail(self, client, business, location, pieces, variation):
        headers = business_headers(business.id)
        set_stock(variation.id, location.id, 5)
        sale = client.post(
            '/api/sales',
            json={
                'location_id': location.id,
                'lines': [{'variation_id': variation.id, 'quantity': 1, 'unit_id': pieces.id, 'unit_price': '10'}],
            },
            headers=headers,
        )
        txn_id = sale.json['id']

        listed = client.get('/api/sales?status=final', headers=headers)
        assert listed.status_code == 200
        assert listed.json['meta']['total'] == 1

        detail = client.get(f'/api/sales/{txn_id}', headers=headers)
        assert detail.status_code == 200
        assert detail.json['items'][0]['product_name'] == 'Linen Dress'

        assert client.get(f'/api/purchases/{txn_id}', headers=headers).status_code == 404
        assert client.get('/api/purchases', headers=headers).json['meta']['total'] == 0

    def test_variation_lines(self, client, business, location, pieces, variation):
        headers = business_headers(business.id)
        client.post(
            '/api/purchases',
            json={
                'location_id': location.id,
                'lines': [{'variation_id': variation.id, 'quantity': 3, 'unit_id': pieces.id, 'purchase_price': '4'}],
            },
            headers=headers,
        )
        response = client.get(f'/api/variations/{variation.id}/lines', headers=headers)
        assert response.status_code == 200
        assert len(response.json['purchase']) == 1
        assert response.json['sell'] == []

        assert client.get('/api/variations/999999/lines', headers=headers).status_code == 404

    def test_draft_transfer_complete_and_conflict(self, client, business, location, back_room, pieces, variation):
        headers = business_headers(business.id)
        set_stock(variation.id, location.id, 5)
        draft = client.post(
            '/api/transfers',
            json={
                'from_location_id': location.id,
                'to_location_id': back_room.id,
                'status': 'draft',
                'items': [{'variation_id': variation.id, 'quantity': 2, 'unit_id': pieces.id}],
            },
            headers=headers,
        )
        assert draft.status_code == 201
        txn_id = draft.json['transaction_id']

        assert client.get('/api/transfers?status=draft', headers=headers).json['meta']['total'] == 1
        assert client.post(f'/api/transfers/{txn_id}/complete', headers=headers).status_code == 200
        assert client.post(f'/api/transfers/{txn_id}/complete', headers=headers).status_code == 409

        detail = client.get(f'/api/transfers/{txn_id}', headers=headers)
        assert detail.json['status'] == 'final'
        assert detail.json['to_location']['id'] == back_room.id


class TestSummaryReportRoutes:

    def test_inventory_low_stock_only(self, client, db_session, business, location, back_room, product, variation):
        product.alert_quantity = Decimal('2')
        db_session.commit()
        set_stock(variation.id, location.id, 1)
        set_stock(variation.id, back_room.id, 9)

        response = client.get('/api/reports/inventory?low_stock_only=true', headers=business_headers(business.id))

        assert response.status_code == 200
        assert response.json['summary']['low_stock_items'] == 1
        assert [row['location_id'] for row in response.json['items']] == [location.id]

    def test_inventory_csv_export(self, client, business, location, variation):
        set_stock(variation.id, location.id, 4)
        response = client.get('/api/reports/inventory/export?format=csv', headers=business_headers(business.id))
        assert response.status_code == 200
        lines = response.get_data(as_text=True).strip().splitlines()
        assert len(lines) == 2
        assert ',stock,' in lines[1]

    def test_sales_and_purchase_summaries(self, client, business, location, pieces, variation):
        headers = business_headers(business.id)
        client.post(
            '/api/purchases',
            json={
                'location_id': location.id,
                'date': '2024-03-01',
                'lines': [{'variation_id': variation.id, 'quantity': 4, 'unit_id': pieces.id, 'purchase_price': '5'}],
            },
            headers=headers,
        )

        purchases = client.get('/api/reports/purchases?date_from=2024-03-01&date_to=2024-03-31', headers=headers)
        assert purchases.status_code == 200
        assert Decimal(purchases.json['summary']['total_purchases']) == Decimal('20')

        sales = client.get('/api/reports/sales', headers=headers)
        assert sales.status_code == 200
        assert sales.json['summary']['total_transactions'] == 0
