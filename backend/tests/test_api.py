"""
Tests for API Routes.

Requires Python 3.11+.
"""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from api.routes import static
from api.routes.static import CLIENT_SCRIPT_PATH, CLIENT_SCRIPT_TAG, inject_client_script, serve_static


@pytest.fixture
def client(settings):
    """Create a test client."""
    return TestClient(create_app(settings))


class TestHealthEndpoint:
    """Test cases for health endpoint."""

    def test_health_check(self, client):
        """Test health check returns valid response."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["clients"] == 0
        assert data["watching"] is False


class TestEventsEndpoint:
    """Test cases for the streaming endpoint."""

    def test_preflight(self, client):
        """Test that OPTIONS answers with no content."""
        response = client.options("/events")
        assert response.status_code == 204
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"

    def test_cross_origin_preflight(self, client):
        """Test that a browser preflight also gets no content."""
        response = client.options(
            "/events",
            headers={
                "Origin": "http://other:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert response.status_code == 204
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert "GET" in response.headers["access-control-allow-methods"]

    def test_cors_still_applies_elsewhere(self, client):
        """Test that other routes keep the regular CORS handling."""
        response = client.get("/health", headers={"Origin": "http://other:3000"})
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestStaticEndpoints:
    """Test cases for static file serving."""

    def test_index_has_client_script(self, client):
        """Test that HTML pages get the client script."""
        response = client.get("/")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert CLIENT_SCRIPT_TAG in response.text
        assert response.text.index(CLIENT_SCRIPT_TAG) < response.text.index("</body>")

    def test_stylesheet(self, client):
        """Test that CSS is served with its MIME type."""
        response = client.get("/app.css")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/css")
        assert response.text == "body { margin: 0; }\n"

    def test_script(self, client):
        """Test that JS is served with its MIME type."""
        response = client.get("/app.js")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/javascript")

    def test_unknown_extension(self, client):
        """Test the fallback MIME type."""
        response = client.get("/notes.txt")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/octet-stream")

    def test_missing_file(self, client):
        """Test the 404 fallback."""
        response = client.get("/missing.html")
        assert response.status_code == 404
        assert response.text == "Not found"

    def test_directory_index(self, client, site_root):
        """Test that directories serve their index file."""
        (site_root / "docs").mkdir()
        (site_root / "docs" / "index.html").write_text("<p>docs</p>")
        response = client.get("/docs/")
        assert response.status_code == 200
        assert "<p>docs</p>" in response.text

    def test_client_script(self, client):
        """Test that the browser agent is served."""
        response = client.get(CLIENT_SCRIPT_PATH)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/javascript")
        assert "EventSource" in response.text

    def test_injection_disabled(self, settings):
        """Test serving HTML unchanged when injection is off."""
        settings = settings.model_copy(
            update={"static": settings.static.model_copy(update={"inject_client": False})}
        )
        response = TestClient(create_app(settings)).get("/index.html")
        assert response.status_code == 200
        assert CLIENT_SCRIPT_TAG not in response.text

    def test_idiomorph_injected_before_client(self, settings):
        """Test that a configured Idiomorph script loads ahead of the client."""
        url = "https://unpkg.com/idiomorph@0.3.0/dist/idiomorph.min.js"
        settings = settings.model_copy(
            update={"static": settings.static.model_copy(update={"idiomorph_url": url})}
        )
        response = TestClient(create_app(settings)).get("/")
        assert response.status_code == 200
        assert f'<script src="{url}" data-livemorph-dependency></script>' in response.text
        assert response.text.index(url) < response.text.index(CLIENT_SCRIPT_TAG)

    def test_unhandled_error_is_json(self, settings, monkeypatch):
        """Test the global exception handler."""

        def broken(url_path, settings):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(static, "serve_static", broken)
        client = TestClient(create_app(settings), raise_server_exceptions=False)

        response = client.get("/index.html")
        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"


class TestServeStatic:
    """Test cases for path resolution."""

    def test_traversal_forbidden(self, settings):
        """Test that parent references are refused."""
        response = serve_static("/../secret.txt", settings)
        assert response is not None
        assert response.status_code == 403

    def test_symlink_escape_forbidden(self, settings, site_root, tmp_path_factory):
        """Test that files resolving outside the root are refused."""
        outside = tmp_path_factory.mktemp("outside") / "secret.txt"
        outside.write_text("secret")
        (site_root / "link.txt").symlink_to(outside)

        response = serve_static("/link.txt", settings)
        assert response is not None
        assert response.status_code == 403

    def test_missing_returns_none(self, settings):
        """Test that a missing file yields no response."""
        assert serve_static("/nope.css", settings) is None


class TestInjectClientScript:
    """Test cases for script injection."""

    def test_before_body_close(self):
        html = "<html><body><p>x</p></body></html>"
        assert inject_client_script(html) == (
            f"<html><body><p>x</p>{CLIENT_SCRIPT_TAG}\n</body></html>"
        )

    def test_without_body(self):
        assert inject_client_script("<p>x</p>") == f"<p>x</p>{CLIENT_SCRIPT_TAG}"

    def test_dependencies_first(self):
        html = "<body></body>"
        assert inject_client_script(html, ["/idiomorph.js"]) == (
            '<body><script src="/idiomorph.js" data-livemorph-dependency></script>\n'
            f"{CLIENT_SCRIPT_TAG}\n</body>"
        )

    def test_already_present(self):
        html = f"<body>{CLIENT_SCRIPT_TAG}</body>"
        assert inject_client_script(html) == html
