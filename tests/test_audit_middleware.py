"""
Tests for actor resolution in the HTTP audit middleware.
"""

from sqlalchemy.exc import OperationalError
from starlette.requests import Request

from app.core import audit_middleware


def make_request(headers):
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/auth/me",
            "query_string": b"",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        }
    )


class TestActorFor:
    def test_valid_token_resolves_to_email(self, platform_owner, auth_headers):
        request = make_request(auth_headers(platform_owner))
        assert audit_middleware._actor_for(request) == "owner@unity.example.com"

    def test_missing_token_is_anonymous(self):
        assert audit_middleware._actor_for(make_request({})) == "anonymous"

    def test_database_error_falls_back_to_anonymous(self, monkeypatch):
        def unavailable(creds, db):
            raise OperationalError("SELECT 1", {}, Exception("database is down"))

        monkeypatch.setattr(audit_middleware, "get_principal", unavailable)
        request = make_request({"Authorization": "Bearer some.jwt.token"})
        assert audit_middleware._actor_for(request) == "anonymous"
