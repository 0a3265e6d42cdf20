from auth import create_access_token, decode_token, unverified_subject


def test_token_round_trip():
    token = create_access_token("abc", email="ana@example.com", name="Ana")
    claims = decode_token(token)
    assert claims.sub == "abc"
    assert claims.display_name == "Ana"
    assert unverified_subject(token) == "abc"


def test_garbage_token_is_rejected():
    assert decode_token("no.es.un.token") is None
    assert unverified_subject("basura") is None


def test_missing_token_is_unauthorized(client):
    response = client.get("/api/skills")
    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": response.json()["error"],
        "code": "UNAUTHORIZED",
    }


def test_user_is_created_on_first_request(client, auth_headers):
    response = client.get("/api/auth/me", headers=auth_headers)
    assert response.status_code == 200
    user = response.json()["data"]
    assert user["email"] == "ana@example.com"
    assert user["name"] == "Ana"
    assert user["timezone"] == "UTC"

    again = client.get("/api/auth/me", headers=auth_headers).json()["data"]
    assert again["id"] == user["id"]


def test_preferences_are_merged(client, auth_headers):
    client.patch("/api/auth/me", json={"preferences": {"theme": "dark"}}, headers=auth_headers)
    response = client.patch("/api/auth/me", json={"preferences": {"lang": "es"}, "timezone": "Europe/Madrid"},
                            headers=auth_headers)
    data = response.json()["data"]
    assert data["preferences"] == {"theme": "dark", "lang": "es"}
    assert data["timezone"] == "Europe/Madrid"


def test_unknown_timezone_is_rejected(client, auth_headers):
    response = client.patch("/api/auth/me", json={"timezone": "Marte/Olympus"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "timezone"


def test_delete_account_removes_data(client, auth_headers, make_skill):
    make_skill()
    assert client.delete("/api/auth/me", headers=auth_headers).status_code == 200

    # Siguiente petición → usuario nuevo, sin datos
    body = client.get("/api/skills", headers=auth_headers).json()
    assert body["data"] == []


def test_validation_error_envelope(client, auth_headers):
    response = client.post("/api/skills", json={"name": ""}, headers=auth_headers)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"][0]["field"] == "name"


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/nada")
    assert response.status_code == 404
    assert response.json()["success"] is False
    assert response.json()["code"] == "NOT_FOUND"


def test_health_is_public(client):
    assert client.get("/api/health").json()["status"] == "ok"
