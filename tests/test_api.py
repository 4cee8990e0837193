"""End-to-end tests for the HTTP API."""
import asyncio
import base64
import json
from functools import partial

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClassifier, make_repository, make_sqlite_engine
from daily_doodle import main
from daily_doodle.dates import utc_date_key
from daily_doodle.db import Settings, get_settings, init_db
from daily_doodle.raster import RasterImage
from daily_doodle.storage import LocalRasterStore

UID = "player-1"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def make_token(claims: dict) -> str:
    def segment(obj) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).decode().rstrip("=")

    return f"{segment({'alg': 'RS256', 'typ': 'JWT'})}.{segment(claims)}.c2ln"


def off_loop_recorder(fn):
    """Wrap fn, recording for each call whether it ran outside the event loop."""
    seen = []

    def wrapper(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            seen.append(False)
        except RuntimeError:
            seen.append(True)
        return fn(*args, **kwargs)

    return wrapper, seen


@pytest.fixture
def app_state(tmp_path, monkeypatch):
    engine = make_sqlite_engine()
    state = {
        "repo": make_repository(engine),
        "store": LocalRasterStore(tmp_path),
        "classifier": FakeClassifier(lambda word: json.dumps({"guess": word, "confidence": 0.93})),
        "settings": Settings(allow_date_override=True, firebase_project_id="doodle-test"),
    }

    async def _init_db():
        await init_db(engine)

    monkeypatch.setattr(main, "init_db", _init_db)
    overrides = main.app.dependency_overrides
    overrides[main.get_repository] = lambda: state["repo"]
    overrides[main.get_raster_store] = lambda: state["store"]
    overrides[main.get_classifier] = lambda: state["classifier"]
    overrides[get_settings] = lambda: state["settings"]
    overrides[main.get_current_uid] = lambda: UID
    yield state
    overrides.clear()


@pytest.fixture
def client(app_state):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def doodle() -> str:
    return b64(RasterImage.blank(8, 8).to_png())


class TestHealthAndDaily:
    def test_health(self, client):
        """The health check answers without touching the database."""
        assert client.get("/health").json() == {"status": "ok"}

    def test_today_missing(self, client):
        """Today's word is 404 until it has been generated."""
        assert client.get("/daily/today").status_code == 404

    def test_generate_then_read(self, client):
        """A generated word is served for today and by its date key."""
        generated = client.post("/daily/generate")
        assert generated.status_code == 200
        body = generated.json()
        assert body["date"] == utc_date_key()

        assert client.get("/daily/today").json() == body
        assert client.get(f"/daily/{body['date']}").json() == body

    def test_bad_date_key(self, client):
        """A date key that is not a real day is rejected."""
        assert client.get("/daily/2024-99-01").status_code == 400


class TestAttempts:
    def test_submit_scores_in_background(self, client, doodle):
        """A submission returns pending and is scored after the response."""
        client.post("/daily/generate")
        today = utc_date_key()

        submitted = client.post("/attempts", json={"image_base64": f"data:image/png;base64,{doodle}"})
        assert submitted.status_code == 202
        body = submitted.json()
        assert body["id"] == f"{UID}_{today}"
        assert body["status"] == "pending"
        assert body["storagePath"] == f"doodles/{UID}/{today}.png"
        assert body["imageURL"] == f"/attempts/{today}/image"

        attempt = client.get(f"/attempts/{today}").json()
        assert attempt["status"] == "scored"
        assert attempt["isWin"] is True
        assert attempt["openaiGuess"] == client.get("/daily/today").json()["word"]
        assert attempt["scoredAt"] is not None

        progress = client.get("/progress").json()
        assert progress == {
            "uid": UID,
            "pointsTotal": 1,
            "streakCurrent": 1,
            "streakBest": 1,
            "lastWinDate": today,
        }

    def test_image_served_back(self, client, doodle):
        """The uploaded doodle is served back from the attempt's image URL."""
        client.post("/daily/generate")
        client.post("/attempts", json={"image_base64": doodle})

        resp = client.get(f"/attempts/{utc_date_key()}/image")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert RasterImage.from_png(resp.content) == RasterImage.blank(8, 8)

    def test_resubmit_after_score_conflicts(self, client, doodle):
        """A day that is already scored cannot be played again."""
        client.post("/daily/generate")
        client.post("/attempts", json={"image_base64": doodle})

        assert client.post("/attempts", json={"image_base64": doodle}).status_code == 409

    def test_resubmit_while_pending_conflicts(self, client, app_state, doodle):
        """An attempt still waiting for its score keeps its original image."""
        repo = app_state["repo"]
        client.post("/daily/generate")
        today = utc_date_key()
        client.portal.call(
            partial(
                repo.save_pending_attempt,
                uid=UID,
                date_key=today,
                word="cat",
                threshold=0.75,
                storage_path=f"doodles/{UID}/{today}.png",
            )
        )

        resp = client.post("/attempts", json={"image_base64": doodle})
        assert resp.status_code == 409
        assert client.get(f"/attempts/{today}").json()["word"] == "cat"
        assert app_state["classifier"].calls == []

    def test_resubmit_after_error(self, client, app_state, doodle):
        """An errored attempt can be submitted again and scored."""
        app_state["classifier"] = FakeClassifier(error=RuntimeError("upstream 503"))
        client.post("/daily/generate")
        client.post("/attempts", json={"image_base64": doodle})

        app_state["classifier"] = FakeClassifier(lambda word: json.dumps({"guess": word, "confidence": 0.93}))
        assert client.post("/attempts", json={"image_base64": doodle}).status_code == 202

        attempt = client.get(f"/attempts/{utc_date_key()}").json()
        assert attempt["status"] == "scored"
        assert attempt["error"] is None

    def test_no_daily_word(self, client, doodle):
        """Submitting without a daily word for the day is 404."""
        assert client.post("/attempts", json={"image_base64": doodle}).status_code == 404

    def test_bad_image(self, client):
        """Payloads that are not base64 PNGs are rejected."""
        client.post("/daily/generate")
        assert client.post("/attempts", json={"image_base64": "%%%"}).status_code == 400
        assert client.post("/attempts", json={"image_base64": b64(b"not a png")}).status_code == 400

    def test_decode_runs_off_event_loop(self, client, monkeypatch, doodle):
        """Decoding an uploaded doodle happens in a worker thread."""
        decode, seen = off_loop_recorder(main._decode_image)
        monkeypatch.setattr(main, "_decode_image", decode)
        client.post("/daily/generate")

        assert client.post("/attempts", json={"image_base64": doodle}).status_code == 202
        assert seen == [True]

    def test_date_override_builds_streak(self, client, app_state, doodle):
        """With the override on, wins on consecutive days build a streak."""
        repo = app_state["repo"]
        for day in ["2024-01-05", "2024-01-06"]:
            client.portal.call(partial(repo.insert_daily_word, date_key=day, word="cat", difficulty="easy", threshold=0.7))
            assert client.post("/attempts", json={"image_base64": doodle, "date": day}).status_code == 202

        progress = client.get("/progress").json()
        assert progress["streakCurrent"] == 2
        assert progress["lastWinDate"] == "2024-01-06"

    def test_date_override_disabled(self, client, app_state, doodle):
        """With the override off, the requested date is ignored."""
        app_state["settings"] = Settings(allow_date_override=False)
        client.post("/daily/generate")

        body = client.post("/attempts", json={"image_base64": doodle, "date": "2024-01-05"}).json()
        assert body["date"] == utc_date_key()

    def test_classifier_failure_recorded(self, client, app_state, doodle):
        """A classifier failure leaves the attempt in error and no points."""
        app_state["classifier"] = FakeClassifier(error=RuntimeError("upstream 503"))
        client.post("/daily/generate")
        client.post("/attempts", json={"image_base64": doodle})

        attempt = client.get(f"/attempts/{utc_date_key()}").json()
        assert attempt["status"] == "error"
        assert attempt["error"] == "upstream 503"
        assert client.get("/progress").json()["pointsTotal"] == 0

    def test_missing_attempt(self, client):
        """Reading a day with no attempt is 404."""
        assert client.get("/attempts/2024-01-05").status_code == 404

    def test_progress_defaults(self, client):
        """A first visit to progress returns a zeroed record."""
        assert client.get("/progress").json()["pointsTotal"] == 0


class TestAuth:
    def test_requires_token(self, client):
        """Progress needs a bearer token."""
        main.app.dependency_overrides.pop(main.get_current_uid)
        assert client.get("/progress").status_code == 401

    def test_valid_token(self, client):
        """The uid comes from the token subject."""
        main.app.dependency_overrides.pop(main.get_current_uid)
        token = make_token({"aud": "doodle-test", "sub": "firebase-uid"})

        resp = client.get("/progress", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["uid"] == "firebase-uid"

    def test_wrong_audience(self, client):
        """A token minted for another project is refused."""
        main.app.dependency_overrides.pop(main.get_current_uid)
        token = make_token({"aud": "someone-else", "sub": "firebase-uid"})

        resp = client.get("/progress", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_decode_id_token(self):
        """Decoding returns the subject, or None for garbage."""
        assert main._decode_id_token(make_token({"aud": "p", "sub": "u"}), "p") == "u"
        assert main._decode_id_token("garbage", "p") is None


class TestCanvasFill:
    def test_fill_whole_canvas(self, client):
        """Filling a blank canvas recolors every pixel."""
        resp = client.post(
            "/canvas/fill",
            json={"image_base64": b64(RasterImage.blank(4, 4).to_png()), "x": 0, "y": 0, "color": "#000000", "tolerance": 10},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["changed"] is True
        assert RasterImage.from_png(base64.b64decode(body["image_base64"])) == RasterImage.blank(4, 4, (0, 0, 0, 255))

    def test_noop_fill(self, client):
        """Filling with the color already under the seed changes nothing."""
        resp = client.post(
            "/canvas/fill",
            json={"image_base64": b64(RasterImage.blank(4, 4).to_png()), "x": 1, "y": 1, "color": "#fff"},
        )
        assert resp.json()["changed"] is False

    @pytest.mark.parametrize("x,y,color", [(4, 0, "#000"), (0, -1, "#000"), (0, 0, "#nothex")])
    def test_rejected(self, client, x, y, color):
        """Out-of-bounds seeds and bad colors are 400."""
        resp = client.post(
            "/canvas/fill",
            json={"image_base64": b64(RasterImage.blank(4, 4).to_png()), "x": x, "y": y, "color": color},
        )
        assert resp.status_code == 400

    def test_fill_runs_off_event_loop(self, client, monkeypatch):
        """The flood fill runs in a worker thread, not on the event loop."""
        fill, seen = off_loop_recorder(main.flood_fill)
        monkeypatch.setattr(main, "flood_fill", fill)

        resp = client.post(
            "/canvas/fill",
            json={"image_base64": b64(RasterImage.blank(4, 4).to_png()), "x": 0, "y": 0, "color": "#000"},
        )
        assert resp.status_code == 200
        assert seen == [True]
