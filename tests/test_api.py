from __future__ import annotations

import logging
import unittest
from unittest.mock import patch

from db_fixtures import DatabaseTestCase
from fastapi.testclient import TestClient
from sqlalchemy import select

from spotin.db import get_db
from spotin.main import LOG_HANDLER_NAME, app, configure_logging
from spotin.models import AuditLog, PrincipalRole, Receipt
from spotin.security.passwords import hash_password
from spotin.security.sessions import create_web_session
from spotin.services.checkin_service import INVALID_BARCODE_MESSAGE
from spotin.services.errors import RemoteError

RPC_PATH = '/rest/v1/rpc/toggle_client_checkin_status'
EDGE_PATH = '/functions/v1/checkin-checkout'


class ApiTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()

        def override_get_db():
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.addCleanup(app.dependency_overrides.clear)
        session_patch = patch('spotin.security.sessions.SessionLocal', self.session_factory)
        session_patch.start()
        self.addCleanup(session_patch.stop)
        self.http = TestClient(app)

    def auth_headers(self, role: PrincipalRole = PrincipalRole.RECEPTIONIST, username: str = 'reception') -> dict:
        principal = self.add_principal(username=username, role=role)
        token = create_web_session(self.db, principal.id, ip=None, user_agent=None)
        self.db.commit()
        return {'Authorization': f'Bearer {token}'}

    def audit_actions(self) -> list[str]:
        self.db.expire_all()
        return list(self.db.execute(select(AuditLog.action).order_by(AuditLog.id)).scalars())


class LoggingSetupTests(unittest.TestCase):
    def test_configure_logging_installs_one_stdout_handler(self) -> None:
        configure_logging('INFO')
        configure_logging('INFO')

        names = [handler.get_name() for handler in logging.getLogger().handlers]
        self.assertEqual(names.count(LOG_HANDLER_NAME), 1)


class AuthApiTests(ApiTestCase):
    def test_health_is_public_and_hardened(self) -> None:
        response = self.http.get('/health')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'status': 'ok'})
        self.assertEqual(response.headers['x-content-type-options'], 'nosniff')

    def test_protected_routes_need_a_session(self) -> None:
        response = self.http.post(RPC_PATH, json={'p_barcode': 'CLIENT12345'})
        self.assertEqual(response.status_code, 401)

        response = self.http.post(RPC_PATH, json={'p_barcode': 'CLIENT12345'}, headers={'Authorization': 'Bearer nope'})
        self.assertEqual(response.status_code, 401)

    def test_login_then_me(self) -> None:
        principal = self.add_principal(username='barista', role=PrincipalRole.BARISTA)
        principal.password_hash = hash_password('baristapass')
        self.db.commit()

        response = self.http.post('/auth/login', json={'username': 'Barista', 'password': 'baristapass'})

        self.assertEqual(response.status_code, 200)
        token = response.json()['access_token']
        me = self.http.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()['role'], 'BARISTA')

    def test_login_rejects_bad_password(self) -> None:
        principal = self.add_principal(username='barista', role=PrincipalRole.BARISTA)
        principal.password_hash = hash_password('baristapass')
        self.db.commit()

        response = self.http.post('/auth/login', json={'username': 'barista', 'password': 'wrong-password'})

        self.assertEqual(response.status_code, 401)

    def test_logout_revokes_token(self) -> None:
        headers = self.auth_headers()

        self.assertEqual(self.http.post('/auth/logout', headers=headers).status_code, 200)
        self.assertEqual(self.http.get('/auth/me', headers=headers).status_code, 401)

    def test_logout_all_revokes_every_session(self) -> None:
        principal = self.add_principal()
        tokens = [create_web_session(self.db, principal.id, ip=None, user_agent=None) for _ in range(2)]
        self.db.commit()
        first, second = ({'Authorization': f'Bearer {token}'} for token in tokens)

        response = self.http.post('/auth/logout-all', headers=first)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['revoked_sessions'], 2)
        self.assertEqual(self.http.get('/auth/me', headers=first).status_code, 401)
        self.assertEqual(self.http.get('/auth/me', headers=second).status_code, 401)
        self.assertIn('AUTH_LOGOUT_ALL', self.audit_actions())


class CheckinApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client_row = self.add_client()
        self.headers = self.auth_headers()

    def test_rpc_toggles_client(self) -> None:
        response = self.http.post(RPC_PATH, json={'p_barcode': 'CLIENT12345'}, headers=self.headers)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['action'], 'checked_in')
        self.assertEqual(body['client']['barcode'], 'CLIENT12345')
        self.assertTrue(body['client']['active'])

    def test_rpc_unknown_barcode_reports_failure_in_body(self) -> None:
        response = self.http.post(RPC_PATH, json={'p_barcode': 'ZZZZZZ'}, headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'success': False, 'error': INVALID_BARCODE_MESSAGE})

    def test_rpc_forbidden_for_barista(self) -> None:
        headers = self.auth_headers(role=PrincipalRole.BARISTA, username='barista')
        response = self.http.post(RPC_PATH, json={'p_barcode': 'CLIENT12345'}, headers=headers)
        self.assertEqual(response.status_code, 403)

    def test_edge_function_toggles_twice(self) -> None:
        first = self.http.post(EDGE_PATH, json={'barcode': 'CLIENT12345'}, headers=self.headers)
        second = self.http.post(EDGE_PATH, json={'barcode': 'CLIENT12345'}, headers=self.headers)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()['action'], 'checked_in')
        self.assertEqual(second.json()['action'], 'checked_out')
        self.assertFalse(second.json()['client']['active'])

    def test_edge_function_unknown_barcode_is_400(self) -> None:
        response = self.http.post(EDGE_PATH, json={'barcode': 'ZZZZZZ'}, headers=self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'success': False, 'error': INVALID_BARCODE_MESSAGE})

    def test_edge_function_database_failure_is_400(self) -> None:
        with patch('spotin.routers.checkin.toggle_checkin_status', side_effect=RemoteError('connection reset')):
            response = self.http.post(EDGE_PATH, json={'barcode': 'CLIENT12345'}, headers=self.headers)

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['error'], 'Failed to update client status. Please try again.')
        self.assertEqual(body['details'], 'connection reset')

    def test_edge_function_unexpected_error_is_500(self) -> None:
        with patch('spotin.routers.checkin.toggle_checkin_status', side_effect=RuntimeError('boom')):
            with self.assertLogs('spotin.routers.checkin', level='ERROR'):
                response = self.http.post(EDGE_PATH, json={'barcode': 'CLIENT12345'}, headers=self.headers)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Internal server error')

    def test_manual_check_in_is_audited(self) -> None:
        response = self.http.post(
            EDGE_PATH,
            json={'action': 'checkin', 'client_id': self.client_row.id},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['action'], 'checked_in')
        actions = self.db.execute(select(AuditLog.action)).scalars().all()
        self.assertIn('MANUAL_CHECKED_IN', actions)

        manager = self.auth_headers(role=PrincipalRole.OPERATIONS_MANAGER, username='ops')
        listing = self.http.get('/audit', params={'action': 'manual_checked_in'}, headers=manager)
        self.assertEqual(listing.status_code, 200)
        self.assertEqual([row['metadata'] for row in listing.json()], [{'client_id': self.client_row.id}])
        self.assertEqual(self.http.get('/audit', headers=self.headers).status_code, 403)

    def test_manual_check_out_of_absent_client_is_400(self) -> None:
        response = self.http.post(
            EDGE_PATH,
            json={'action': 'checkout', 'client_id': self.client_row.id},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Client is already checked out.')

    def test_active_sessions_listing(self) -> None:
        self.http.post(EDGE_PATH, json={'barcode': 'CLIENT12345'}, headers=self.headers)

        response = self.http.get('/checkins/active', headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['client_id'] for row in response.json()], [self.client_row.id])


class OrderApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client_row = self.add_client(active=True)
        beans = self.add_stock('Coffee beans', current='2000')
        self.latte = self.add_product('Latte', '45.00', {beans: '18'})

    def _order(self, headers: dict):
        return self.http.post(
            '/orders',
            json={
                'client_id': self.client_row.id,
                'items': [{'id': self.latte.id, 'name': 'Latte', 'quantity': 2, 'price': '45.00'}],
                'payment_method': 'cash',
                'discount_percentage': '10',
            },
            headers=headers,
        )

    def test_barista_completes_order(self) -> None:
        response = self._order(self.auth_headers(role=PrincipalRole.BARISTA, username='barista'))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertRegex(body['receipt_number'], r'^RCP-\d{13}-\d{3}$')
        self.assertEqual(float(body['receipt']['total_amount']), 81.0)
        self.assertEqual(body['completed_line_items'], 1)
        self.assertEqual(len(body['stock_movements']), 1)

    def test_unknown_client_is_404(self) -> None:
        response = self.http.post(
            '/orders',
            json={'client_id': 999, 'items': [{'name': 'Water', 'quantity': 1, 'price': '10'}]},
            headers=self.auth_headers(role=PrincipalRole.BARISTA, username='barista'),
        )
        self.assertEqual(response.status_code, 404)

    def test_refund_flow(self) -> None:
        self._order(self.auth_headers(role=PrincipalRole.BARISTA, username='barista'))
        receipt_id = self.db.execute(select(Receipt.id)).scalar_one()
        manager = self.auth_headers(role=PrincipalRole.OPERATIONS_MANAGER, username='ops')

        missing_reason = self.http.post(f'/receipts/{receipt_id}/refund', json={'reason': ' '}, headers=manager)
        refunded = self.http.post(f'/receipts/{receipt_id}/refund', json={'reason': 'Wrong order'}, headers=manager)

        self.assertEqual(missing_reason.status_code, 400)
        self.assertEqual(refunded.status_code, 200)
        self.assertEqual(refunded.json()['receipt']['status'], 'cancelled')

    def test_stock_overview(self) -> None:
        response = self.http.get(
            '/stock',
            headers=self.auth_headers(role=PrincipalRole.OPERATIONS_MANAGER, username='ops'),
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['summary']['good'], 1)

    def test_order_lines_are_added_listed_and_advanced(self) -> None:
        barista = self.auth_headers(role=PrincipalRole.BARISTA, username='barista')

        created = self.http.post(
            '/orders/lines',
            json={
                'client_id': self.client_row.id,
                'items': [{'id': self.latte.id, 'name': 'Latte', 'quantity': 1, 'price': '45.00'}],
            },
            headers=barista,
        )
        self.assertEqual(created.status_code, 200)
        line = created.json()[0]
        self.assertEqual(line['status'], 'pending')

        pending = self.http.get('/orders/pending', params={'client_id': self.client_row.id}, headers=barista)
        self.assertEqual([row['id'] for row in pending.json()], [line['id']])

        preparing = self.http.patch(f'/orders/lines/{line["id"]}', json={'status': 'preparing'}, headers=barista)
        self.assertEqual(preparing.status_code, 200)
        self.assertEqual(preparing.json()['status'], 'preparing')
        self.assertEqual(self.http.get('/orders/pending', headers=barista).json(), [])

        backwards = self.http.patch(f'/orders/lines/{line["id"]}', json={'status': 'pending'}, headers=barista)
        self.assertEqual(backwards.status_code, 400)
        missing = self.http.patch('/orders/lines/999', json={'status': 'completed'}, headers=barista)
        self.assertEqual(missing.status_code, 404)

    def test_order_lines_need_a_pos_role(self) -> None:
        response = self.http.post(
            '/orders/lines',
            json={'client_id': self.client_row.id, 'items': [{'name': 'Water', 'quantity': 1, 'price': '10'}]},
            headers=self.auth_headers(role=PrincipalRole.COMMUNITY_MANAGER, username='community'),
        )
        self.assertEqual(response.status_code, 403)

    def test_receipt_detail(self) -> None:
        barista = self.auth_headers(role=PrincipalRole.BARISTA, username='barista')
        order = self._order(barista).json()
        receipt_id = self.db.execute(select(Receipt.id)).scalar_one()

        detail = self.http.get(f'/receipts/{receipt_id}', headers=barista)

        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()['receipt_number'], order['receipt_number'])
        self.assertEqual(detail.json()['status'], 'active')
        self.assertEqual([item['name'] for item in detail.json()['line_items']], ['Latte'])
        self.assertEqual(self.http.get('/receipts/999', headers=barista).status_code, 404)


class InventoryApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.manager = self.auth_headers(role=PrincipalRole.OPERATIONS_MANAGER, username='ops')

    def test_stock_item_is_created_and_adjusted(self) -> None:
        created = self.http.post(
            '/stock',
            json={'name': 'Cups', 'current_quantity': '50', 'min_quantity': '20', 'cost_per_unit': '0.30', 'unit': 'pcs'},
            headers=self.manager,
        )
        self.assertEqual(created.status_code, 200)
        stock_id = created.json()['id']
        self.assertEqual(created.json()['status'], 'good')

        adjusted = self.http.post(f'/stock/{stock_id}/adjust', json={'delta': '-35'}, headers=self.manager)

        self.assertEqual(adjusted.status_code, 200)
        self.assertEqual(float(adjusted.json()['current_quantity']), 15.0)
        self.assertEqual(adjusted.json()['status'], 'low')
        self.assertIn('STOCK_ADJUSTED', self.audit_actions())
        self.assertEqual(self.http.post('/stock/999/adjust', json={'delta': '1'}, headers=self.manager).status_code, 404)

    def test_stock_changes_need_back_office_role(self) -> None:
        barista = self.auth_headers(role=PrincipalRole.BARISTA, username='barista')

        response = self.http.post('/stock', json={'name': 'Cups'}, headers=barista)

        self.assertEqual(response.status_code, 403)

    def test_product_and_recipe(self) -> None:
        beans = self.add_stock('Coffee beans')

        product = self.http.post('/products', json={'name': 'Mocha', 'price': '55.00'}, headers=self.manager)
        duplicate = self.http.post('/products', json={'name': 'Mocha', 'price': '50.00'}, headers=self.manager)

        self.assertEqual(product.status_code, 200)
        self.assertEqual(product.json()['category'], 'product')
        self.assertEqual(duplicate.status_code, 400)

        product_id = product.json()['id']
        recipe = self.http.put(
            f'/products/{product_id}/ingredients',
            json=[{'stock_id': beans.id, 'quantity_needed': '20'}],
            headers=self.manager,
        )
        self.assertEqual(recipe.status_code, 200)
        self.assertEqual([row['stock_id'] for row in recipe.json()], [beans.id])
        self.assertEqual(float(recipe.json()[0]['quantity_needed']), 20.0)

        unknown_stock = self.http.put(
            f'/products/{product_id}/ingredients',
            json=[{'stock_id': 999, 'quantity_needed': '5'}],
            headers=self.manager,
        )
        self.assertEqual(unknown_stock.status_code, 404)


class ClientApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.reception = self.auth_headers()

    def test_register_and_look_up(self) -> None:
        created = self.http.post(
            '/clients',
            json={'first_name': 'Mona', 'last_name': 'Ali', 'phone': '01012345678', 'email': 'Mona@Example.com'},
            headers=self.reception,
        )

        self.assertEqual(created.status_code, 200)
        body = created.json()
        self.assertEqual(body['full_name'], 'Mona Ali')
        self.assertEqual(body['email'], 'mona@example.com')
        self.assertRegex(body['client_code'], r'^C-\d{4}-000001$')
        self.assertFalse(body['active'])
        self.assertIn('CLIENT_REGISTERED', self.audit_actions())

        listing = self.http.get('/clients', params={'search': 'mona'}, headers=self.reception)
        self.assertEqual([row['id'] for row in listing.json()], [body['id']])

        detail = self.http.get(f'/clients/{body["id"]}', headers=self.reception)
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()['barcode'], body['barcode'])
        self.assertEqual(self.http.get('/clients/999', headers=self.reception).status_code, 404)

    def test_registration_requires_phone(self) -> None:
        response = self.http.post(
            '/clients',
            json={'first_name': 'Mona', 'last_name': 'Ali', 'phone': ' '},
            headers=self.reception,
        )
        self.assertEqual(response.status_code, 400)

    def test_baristas_can_search_but_not_register(self) -> None:
        barista = self.auth_headers(role=PrincipalRole.BARISTA, username='barista')

        created = self.http.post(
            '/clients',
            json={'first_name': 'Mona', 'last_name': 'Ali', 'phone': '01012345678'},
            headers=barista,
        )

        self.assertEqual(created.status_code, 403)
        self.assertEqual(self.http.get('/clients', headers=barista).status_code, 200)

    def test_deactivation_checks_client_out(self) -> None:
        client = self.add_client()
        self.http.post(EDGE_PATH, json={'barcode': 'CLIENT12345'}, headers=self.reception)

        self.assertEqual(self.http.delete(f'/clients/{client.id}', headers=self.reception).status_code, 403)

        community = self.auth_headers(role=PrincipalRole.COMMUNITY_MANAGER, username='community')
        response = self.http.delete(f'/clients/{client.id}', headers=community)

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()['is_active'])
        self.assertFalse(response.json()['active'])
        self.assertIn('CLIENT_DEACTIVATED', self.audit_actions())
        self.assertEqual(self.http.get('/clients', headers=self.reception).json(), [])
        self.assertEqual(self.open_check_ins(client), [])

    def test_check_in_history(self) -> None:
        client = self.add_client()
        self.http.post(RPC_PATH, json={'p_barcode': 'CLIENT12345'}, headers=self.reception)
        self.http.post(RPC_PATH, json={'p_barcode': 'CLIENT12345'}, headers=self.reception)

        response = self.http.get(f'/clients/{client.id}/checkins', headers=self.reception)

        self.assertEqual(response.status_code, 200)
        history = response.json()
        self.assertEqual([row['status'] for row in history], ['checked_out'])
        self.assertIsNotNone(history[0]['checked_out_at'])


if __name__ == '__main__':
    unittest.main()
