def test_health_reports_database(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "connected"


def test_unknown_route_uses_error_shape(client):
    response = client.get("/api/v1/nothing-here")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Not Found"}


def test_unknown_function_preflight_is_not_found(client):
    assert client.options("/functions/does-not-exist").status_code == 404


def test_cors_preflight_is_answered(client):
    response = client.options(
        "/functions/auth-login",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
