import json

import httpx

USER_HEADERS = {"Authorization": "Bearer user-jwt"}


def _supabase(*, user_status=200, rpc_status=204, delete_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/auth/v1/user":
            if user_status != 200:
                return httpx.Response(user_status, json={"msg": "invalid JWT"})
            return httpx.Response(200, json={"id": "user-123", "email": "a@example.com"})
        if path == "/rest/v1/rpc/delete_user_data":
            if rpc_status >= 400:
                return httpx.Response(rpc_status, json={"message": "permission denied for table notes"})
            return httpx.Response(rpc_status)
        if path == "/auth/v1/admin/users/user-123":
            if delete_status >= 400:
                return httpx.Response(delete_status, json={"msg": "User not found"})
            return httpx.Response(delete_status, json={})
        return httpx.Response(404)

    return handler


def test_delete_account_runs_lookup_data_then_identity(client, upstream_mock):
    upstream_mock.handler = _supabase()

    response = client.post("/delete-account", headers=USER_HEADERS)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert response.headers["access-control-allow-origin"] == "*"

    lookup, rpc, delete = upstream_mock.requests
    assert lookup.method == "GET"
    assert lookup.headers["apikey"] == "anon-key"
    assert lookup.headers["authorization"] == "Bearer user-jwt"

    assert rpc.method == "POST"
    assert str(rpc.url) == "https://project.supabase.test/rest/v1/rpc/delete_user_data"
    assert rpc.headers["apikey"] == "service-key"
    assert rpc.headers["authorization"] == "Bearer service-key"
    assert json.loads(rpc.content) == {"p_user_id": "user-123"}

    assert delete.method == "DELETE"
    assert delete.headers["authorization"] == "Bearer service-key"


def test_delete_account_does_not_use_shared_secret(client, upstream_mock):
    upstream_mock.handler = _supabase(user_status=401)

    response = client.post("/delete-account", headers={"Authorization": "Bearer app-secret"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized."}
    assert len(upstream_mock.requests) == 1


def test_delete_account_requires_bearer_header(client, upstream_mock):
    response = client.post("/delete-account", headers={"X-App-Token": "user-jwt"})

    assert response.status_code == 401
    assert response.json() == {"error": "Missing or invalid authorization header."}
    assert upstream_mock.requests == []


def test_delete_account_stops_when_data_deletion_fails(client, upstream_mock):
    upstream_mock.handler = _supabase(rpc_status=403)

    response = client.post("/delete-account", headers=USER_HEADERS)

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to delete user data.",
        "details": "permission denied for table notes",
    }
    assert [r.url.path for r in upstream_mock.requests] == ["/auth/v1/user", "/rest/v1/rpc/delete_user_data"]


def test_delete_account_reports_identity_deletion_failure(client, upstream_mock):
    upstream_mock.handler = _supabase(delete_status=404)

    response = client.post("/delete-account", headers=USER_HEADERS)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to delete auth user.", "details": "User not found"}


def test_delete_account_requires_supabase_settings(client_factory, upstream_mock):
    client = client_factory(supabase_service_role_key=None)

    response = client.post("/delete-account", headers=USER_HEADERS)

    assert response.status_code == 500
    assert response.json() == {"error": "Missing Supabase environment variables."}
    assert upstream_mock.requests == []
