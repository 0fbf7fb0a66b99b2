import pytest

import llmbench.__main__ as entry


def test_main_serves_the_app_with_uvicorn(monkeypatch: pytest.MonkeyPatch):
    captured = {}

    def fake_run(app, **kwargs):
        captured.update(app=app, **kwargs)

    monkeypatch.setattr(entry.uvicorn, "run", fake_run)
    monkeypatch.setenv("PORT", "9123")
    monkeypatch.delenv("HOST", raising=False)

    entry.main()

    assert captured == {"app": "llmbench.main:app", "host": "0.0.0.0", "port": 9123}
