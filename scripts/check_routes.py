from starlette.testclient import TestClient

from app import app


def exercise_routes() -> None:
    """Log basic transport responses for sanity checks."""
    with TestClient(app) as client:
        for path in ("/", "/healthz"):
            resp = client.get(path)
            print(f"GET {path} ->", resp.status_code, resp.text)

        post = client.post("/mcp", json={})
        print("POST /mcp ->", post.status_code, "history", [r.status_code for r in post.history])


if __name__ == "__main__":
    exercise_routes()
