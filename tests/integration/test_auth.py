"""
Integration tests for bearer token authentication.
"""

import time

import jwt


def _bearer(token):
    return {'Authorization': f'Bearer {token}'}


class TestBearerToken:
    """Every sales endpoint requires a valid agent token."""

    def test_missing_token_is_rejected(self, client):
        response = client.get('/sales')

        assert response.status_code == 401
        assert response.get_json()['message'] == 'No token provided'

    def test_wrong_scheme_is_rejected(self, client, token_for):
        response = client.get('/sales', headers={'Authorization': f'Basic {token_for("agent-1")}'})

        assert response.status_code == 401

    def test_token_signed_with_another_secret(self, client, token_for):
        token = token_for('agent-1', secret='not-the-secret-used-by-the-service')
        response = client.get('/sales', headers=_bearer(token))

        assert response.status_code == 401
        assert response.get_json()['message'] == 'Invalid token'

    def test_expired_token(self, app, client):
        token = jwt.encode(
            {'userId': 'agent-1', 'role': 'agent', 'exp': int(time.time()) - 60},
            app.config['JWT_SECRET'],
            algorithm='HS256'
        )
        response = client.get('/sales', headers=_bearer(token))

        assert response.status_code == 401
        assert response.get_json()['message'] == 'Token expired'

    def test_token_without_agent_id(self, app, client):
        token = jwt.encode({'role': 'agent'}, app.config['JWT_SECRET'], algorithm='HS256')
        response = client.get('/sales', headers=_bearer(token))

        assert response.status_code == 401

    def test_sub_claim_is_accepted(self, app, client):
        token = jwt.encode({'sub': 'agent-sub'}, app.config['JWT_SECRET'], algorithm='HS256')
        response = client.get('/sales', headers=_bearer(token))

        assert response.status_code == 200

    def test_write_endpoints_require_token(self, client, widget_items):
        response = client.post('/sales', json={
            'customerName': 'Ada', 'items': widget_items, 'paymentMethod': 'cash'
        })
        assert response.status_code == 401

        response = client.post('/sales/1/payments', json={'amount': 10})
        assert response.status_code == 401

    def test_metrics_endpoint_is_open(self, client):
        response = client.get('/metrics')

        assert response.status_code == 200
        assert b'http_requests_total' in response.data
