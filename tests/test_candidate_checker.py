"""Tests for the candidate URL checker."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import FakeCounterStore, FakeFetcher, load_candidate, seed_candidate, seed_retailer
from dropwatch.config import settings
from dropwatch.db.models import DropEvent, DropOutcome
from dropwatch.errors import DefinitiveGoneError, FetchError, TransientNetworkError
from dropwatch.ingest.candidate_checker import (
    CandidateChecker,
    classify_error,
    classify_response,
    clamp01,
)
from dropwatch.ingest.fetchers.base import FetchResult
from dropwatch.ingest.rate_budget import RateBudgetGate
from dropwatch.ingest.retailer_config import RetailerConfigResolver
from dropwatch.notify.candidate_metrics import CandidateMetricsRecorder
from dropwatch.notify.outcome_recorder import DropOutcomeRecorder
from dropwatch.notify.signal_publisher import DropSignalPublisher

TARGET_URL = "https://www.target.com/p/pokemon-etb/-/A-90000001"

LIVE_HTML = (
    "<html><head><title>Pokemon TCG Elite Trainer Box</title></head>"
    "<body><h1>Elite Trainer Box</h1><span>$39.99</span>"
    "<button>Add to Cart</button></body></html>"
)
CAPTCHA_HTML = (
    "<html><body><p>Please complete the captcha to continue</p>"
    "<span>$39.99</span><button>Add to Cart</button></body></html>"
)
PLAIN_HTML = "<html><body><p>Welcome</p></body></html>"
RECAPTCHA_HTML = (
    "<html><head><title>Pokemon TCG Elite Trainer Box</title>"
    '<script src="https://www.google.com/recaptcha/api.js" async defer></script></head>'
    "<body><h1>Elite Trainer Box</h1><span>$39.99</span>"
    "<button>Add to Cart</button></body></html>"
)


def ok(html: str, status: int = 200) -> FetchResult:
    return FetchResult(data=html, status=status, headers={"content-type": "text/html"})


def build_checker(session_factory, store, fetcher, **kwargs) -> CandidateChecker:
    config = RetailerConfigResolver(store)
    return CandidateChecker(
        session_factory=session_factory,
        fetcher=fetcher,
        budget_gate=RateBudgetGate(store, config),
        config=config,
        metrics_recorder=CandidateMetricsRecorder(store),
        signal_publisher=DropSignalPublisher(session_factory, store),
        outcome_recorder=DropOutcomeRecorder(session_factory),
        delay_ms=0,
        **kwargs,
    )


def daily_counters(store: FakeCounterStore, slug: str) -> dict:
    return store.hashes.get(CandidateMetricsRecorder.daily_key(slug), {})


class TestClassification:
    """Tests for the pure classification helpers."""

    def test_clamp01(self):
        assert clamp01(-0.2) == 0.0
        assert clamp01(1.3) == 1.0
        assert clamp01(0.4) == 0.4

    def test_listing_page_with_prices_is_only_valid(self):
        html = "<html><body><p>$39.99</p><p>$19.99</p><button>Add to Cart</button></body></html>"
        outcome = classify_response("https://www.target.com/s?searchTerm=etb", ok(html), 0.5)

        assert outcome.status == "valid"
        assert outcome.score == pytest.approx(0.55)
        assert outcome.live is False

    def test_structured_data_product_with_price_is_live_without_cta(self):
        html = (
            '<html><head><script type="application/ld+json">{"@type": "Product"}</script></head>'
            "<body><p>$49.99</p></body></html>"
        )
        outcome = classify_response("https://www.target.com/p/etb/-/A-1", ok(html), 0.5)

        assert outcome.status == "live"
        assert outcome.reason == "price_seen,jsonld_product"

    def test_captcha_script_does_not_hide_live_page(self):
        outcome = classify_response(TARGET_URL, ok(RECAPTCHA_HTML), 0.5)

        assert outcome.status == "live"
        assert outcome.score == pytest.approx(0.75)

    def test_blocked_wording_short_circuits_only_plain_responses(self):
        plain = classify_response(TARGET_URL, ok(CAPTCHA_HTML), 0.5)
        rendered = classify_response(TARGET_URL, ok(CAPTCHA_HTML), 0.5, rendered=True)

        assert plain.reason == "http_200_blocked"
        assert rendered.status == "live"
        assert "cta" in rendered.reason

    def test_reachable_page_without_cues(self):
        outcome = classify_response("https://shop.example.com/x", ok(PLAIN_HTML), 0.5)

        assert outcome.status == "valid"
        assert outcome.reason == "reachable_no_live_cues"

    @pytest.mark.parametrize("status", [403, 429, 500, 503])
    def test_other_non_2xx_degrade(self, status):
        outcome = classify_response(TARGET_URL, ok("", status=status), 0.5)

        assert outcome.status == "unknown"
        assert outcome.score == pytest.approx(0.45)
        assert outcome.reason == f"http_{status}"

    @pytest.mark.parametrize(
        "exc, status, penalty, reason",
        [
            (DefinitiveGoneError("gone", status=410), "invalid", 0.3, "http_410"),
            (FetchError("gateway returned 404", status=404), "invalid", 0.3, "http_404"),
            (RuntimeError("Request failed with status code 404"), "invalid", 0.3, None),
            (TransientNetworkError("timed out", code="timeout"), "unknown", 0.05, "timeout"),
            (FetchError("gateway returned 429", status=429), "unknown", 0.05, "http_429"),
            (RuntimeError("read ECONNRESET"), "unknown", 0.05, "read ECONNRESET"),
            (OSError("Temporary failure in name resolution"), "unknown", 0.05, None),
            (ValueError("unexpected payload"), "unknown", 0.02, "unexpected payload"),
        ],
    )
    def test_classify_error(self, exc, status, penalty, reason):
        outcome = classify_error(exc, 0.5)

        assert outcome.status == status
        assert outcome.score == pytest.approx(0.5 - penalty)
        if reason is not None:
            assert outcome.reason == reason


class TestCheckBatch:
    """Tests for CandidateChecker.check_batch()."""

    @pytest.mark.asyncio
    async def test_live_candidate_end_to_end(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.5)
        fetcher = FakeFetcher(plain={TARGET_URL: ok(LIVE_HTML)})

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 1
        assert result.live_found == 1

        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.status == "live"
        assert candidate.score == pytest.approx(0.75)
        assert "cta" in candidate.reason
        assert "price_seen" in candidate.reason
        assert candidate.last_checked_at is not None

        async with session_factory() as db:
            events = (await db.execute(select(DropEvent))).scalars().all()
            outcomes = (await db.execute(select(DropOutcome))).scalars().all()

        assert len(events) == 1
        assert events[0].signal_type == "url_live"
        assert events[0].confidence == 85
        assert events[0].signal_value == TARGET_URL
        assert events[0].source == "url-candidate-checker"
        assert len(outcomes) == 1
        assert outcomes[0].first_seen_at is not None

        counters = daily_counters(store, "target")
        assert counters["requests"] == 1
        assert counters["live"] == 1
        assert "blocked" not in counters

        # Rendering is a fallback only
        assert [call["render"] for call in fetcher.calls] == [False]

    @pytest.mark.asyncio
    async def test_blocked_200_without_render_stays_unknown(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.5)
        store.values["config:url_candidate:render_behavior:target"] = "never"
        fetcher = FakeFetcher(plain={TARGET_URL: ok(CAPTCHA_HTML)})

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 1
        assert result.live_found == 0

        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.status == "unknown"
        assert candidate.score == pytest.approx(0.45)
        assert candidate.reason.startswith("http_200")

        assert len(fetcher.calls) == 1
        assert daily_counters(store, "target")["blocked"] == 1

        async with session_factory() as db:
            assert (await db.execute(select(DropEvent))).first() is None

    @pytest.mark.asyncio
    async def test_render_fallback_on_block(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL)
        fetcher = FakeFetcher(
            plain={TARGET_URL: ok(CAPTCHA_HTML)},
            rendered={TARGET_URL: ok(LIVE_HTML)},
        )

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.live_found == 1
        assert [call["render"] for call in fetcher.calls] == [False, True]
        assert fetcher.calls[1]["timeout_ms"] >= fetcher.calls[0]["timeout_ms"]
        assert (await load_candidate(session_factory, candidate_id)).status == "live"

    @pytest.mark.asyncio
    async def test_render_fallback_still_forbidden(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.5)
        fetcher = FakeFetcher(
            plain={TARGET_URL: ok("Access Denied", status=403)},
            rendered={TARGET_URL: ok("Access Denied", status=403)},
        )

        await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.status == "unknown"
        assert candidate.score == pytest.approx(0.45)
        assert candidate.reason == "http_403"

    @pytest.mark.asyncio
    async def test_render_failure_keeps_plain_response(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.5)
        fetcher = FakeFetcher(
            plain={TARGET_URL: ok(CAPTCHA_HTML)},
            rendered={TARGET_URL: TransientNetworkError("render timeout", code="timeout")},
        )

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 1
        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.reason == "http_200_blocked"
        assert candidate.score == pytest.approx(0.45)

    @pytest.mark.asyncio
    async def test_always_render_policy(self, session_factory, store, monkeypatch):
        monkeypatch.setenv("URL_CANDIDATE_RENDER_BEHAVIOR_TARGET", "always")
        retailer_id = await seed_retailer(session_factory, "target")
        await seed_candidate(session_factory, retailer_id, TARGET_URL)
        fetcher = FakeFetcher(
            plain={TARGET_URL: ok(PLAIN_HTML)},
            rendered={TARGET_URL: ok(LIVE_HTML)},
        )

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.live_found == 1
        assert [call["render"] for call in fetcher.calls] == [False, True]

    @pytest.mark.asyncio
    async def test_rendered_page_with_captcha_script_goes_live(self, session_factory, store):
        store.values["config:url_candidate:render_behavior:target"] = "always"
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.5)
        fetcher = FakeFetcher(
            plain={TARGET_URL: ok(RECAPTCHA_HTML)},
            rendered={TARGET_URL: ok(RECAPTCHA_HTML)},
        )

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.live_found == 1
        assert [call["render"] for call in fetcher.calls] == [False, True]
        assert "blocked" not in daily_counters(store, "target")
        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.status == "live"
        assert candidate.score == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_force_render_renders_unblocked_pages(self, session_factory, store, monkeypatch):
        monkeypatch.setattr(settings, "url_candidate_force_render", True)
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL)
        fetcher = FakeFetcher(
            plain={TARGET_URL: ok(PLAIN_HTML)},
            rendered={TARGET_URL: ok(LIVE_HTML)},
        )

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.live_found == 1
        assert [call["render"] for call in fetcher.calls] == [False, True]
        assert (await load_candidate(session_factory, candidate_id)).status == "live"

    @pytest.mark.asyncio
    async def test_force_render_respects_never_policy(self, session_factory, store, monkeypatch):
        monkeypatch.setattr(settings, "url_candidate_force_render", True)
        store.values["config:url_candidate:render_behavior:target"] = "never"
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL)
        fetcher = FakeFetcher(plain={TARGET_URL: ok(PLAIN_HTML)})

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 1
        assert [call["render"] for call in fetcher.calls] == [False]
        assert (await load_candidate(session_factory, candidate_id)).status == "valid"

    @pytest.mark.asyncio
    async def test_render_on_block_disabled(self, session_factory, store, monkeypatch):
        monkeypatch.setattr(settings, "url_candidate_render_on_block", False)
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.5)
        fetcher = FakeFetcher(plain={TARGET_URL: ok(CAPTCHA_HTML)})

        await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert [call["render"] for call in fetcher.calls] == [False]
        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.status == "unknown"
        assert candidate.reason == "http_200_blocked"
        assert candidate.score == pytest.approx(0.45)
        assert daily_counters(store, "target")["blocked"] == 1

    @pytest.mark.asyncio
    async def test_session_reuse_flag_is_passed_to_fetcher(self, session_factory, store):
        store.values["config:url_candidate:session_reuse:target"] = "false"
        retailer_id = await seed_retailer(session_factory, "target")
        await seed_candidate(session_factory, retailer_id, TARGET_URL)
        fetcher = FakeFetcher(plain={TARGET_URL: ok(PLAIN_HTML)})

        await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert fetcher.calls[0]["use_session"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("http_status", [404, 410])
    @pytest.mark.parametrize("prior_status", ["unknown", "valid"])
    @pytest.mark.parametrize("prior_score", [0.05, 0.5, 1.0])
    async def test_gone_always_decreases_score(
        self, session_factory, store, http_status, prior_status, prior_score
    ):
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(
            session_factory, retailer_id, TARGET_URL, status=prior_status, score=prior_score
        )
        fetcher = FakeFetcher(plain={TARGET_URL: ok("Not Found", status=http_status)})

        await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.status == "invalid"
        assert candidate.score < prior_score
        assert 0.0 <= candidate.score <= 1.0
        assert candidate.reason == f"http_{http_status}"
        assert daily_counters(store, "target")["invalid"] == 1

    @pytest.mark.asyncio
    async def test_scores_stay_clamped(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        high = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.95)
        low_url = "https://www.target.com/p/other/-/A-2"
        low = await seed_candidate(session_factory, retailer_id, low_url, product_id="prod-2", score=0.1)
        fetcher = FakeFetcher(plain={TARGET_URL: ok(LIVE_HTML), low_url: ok("", status=404)})

        await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert (await load_candidate(session_factory, high)).score == 1.0
        assert (await load_candidate(session_factory, low)).score == 0.0

    @pytest.mark.asyncio
    async def test_missing_score_uses_default(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=None)
        fetcher = FakeFetcher(plain={TARGET_URL: ok(PLAIN_HTML)})

        await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert (await load_candidate(session_factory, candidate_id)).score == pytest.approx(0.55)

    @pytest.mark.asyncio
    async def test_processes_exactly_limit_oldest_first(self, session_factory, store):
        store.values["config:url_candidate:qpm:example"] = "100"
        retailer_id = await seed_retailer(session_factory, "example")
        now = datetime.utcnow()
        ids = []
        plain = {}
        for i in range(5):
            url = f"https://shop.example.com/item/{i}"
            plain[url] = ok(PLAIN_HTML)
            ids.append(
                await seed_candidate(
                    session_factory,
                    retailer_id,
                    url,
                    product_id=f"prod-{i}",
                    updated_at=now - timedelta(hours=10 - i),
                )
            )

        fetcher = FakeFetcher(plain=plain)
        result = await build_checker(session_factory, store, fetcher).check_batch(limit=3)

        assert result.checked == 3
        assert [call["url"] for call in fetcher.calls] == [f"https://shop.example.com/item/{i}" for i in range(3)]
        for candidate_id in ids[:3]:
            assert (await load_candidate(session_factory, candidate_id)).status == "valid"
        for candidate_id in ids[3:]:
            candidate = await load_candidate(session_factory, candidate_id)
            assert candidate.status == "unknown"
            assert candidate.last_checked_at is None

    @pytest.mark.asyncio
    async def test_only_unknown_and_valid_rows_are_selected(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "example")
        for i, status in enumerate(["live", "invalid", "valid"]):
            await seed_candidate(
                session_factory,
                retailer_id,
                f"https://shop.example.com/item/{i}",
                product_id=f"prod-{i}",
                status=status,
            )
        fetcher = FakeFetcher(plain={"https://shop.example.com/item/2": ok(PLAIN_HTML)})

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 1
        assert [call["url"] for call in fetcher.calls] == ["https://shop.example.com/item/2"]

    @pytest.mark.asyncio
    async def test_budget_exhausted_rows_are_skipped_untouched(self, session_factory, store):
        store.values["config:url_candidate:qpm:target"] = "1"
        target_id = await seed_retailer(session_factory, "target")
        walmart_id = await seed_retailer(session_factory, "walmart")
        now = datetime.utcnow()

        target_urls = [f"https://www.target.com/p/item/-/A-{i}" for i in range(3)]
        target_ids = [
            await seed_candidate(
                session_factory,
                target_id,
                url,
                product_id=f"prod-{i}",
                score=0.5,
                updated_at=now - timedelta(hours=5 - i),
            )
            for i, url in enumerate(target_urls)
        ]
        walmart_url = "https://www.walmart.com/ip/item/1"
        await seed_candidate(session_factory, walmart_id, walmart_url, product_id="prod-w")

        plain = {url: ok(PLAIN_HTML) for url in target_urls}
        plain[walmart_url] = ok(PLAIN_HTML)
        fetcher = FakeFetcher(plain=plain)

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 2
        assert {call["url"] for call in fetcher.calls} == {target_urls[0], walmart_url}

        for candidate_id in target_ids[1:]:
            candidate = await load_candidate(session_factory, candidate_id)
            assert candidate.status == "unknown"
            assert candidate.score == 0.5
            assert candidate.reason is None
            assert candidate.last_checked_at is None

        assert daily_counters(store, "target")["requests"] == 1

    @pytest.mark.asyncio
    async def test_budget_store_down_fails_open(self, session_factory):
        store = FakeCounterStore(fail=True)
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL)
        fetcher = FakeFetcher(plain={TARGET_URL: ok(LIVE_HTML)})

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 1
        assert result.live_found == 1
        assert (await load_candidate(session_factory, candidate_id)).status == "live"

    @pytest.mark.asyncio
    async def test_fetch_errors_are_recorded_and_persisted(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.5)
        fetcher = FakeFetcher(plain={TARGET_URL: TransientNetworkError("timed out", code="timeout")})

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 1
        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.status == "unknown"
        assert candidate.score == pytest.approx(0.45)
        assert candidate.reason == "timeout"
        assert daily_counters(store, "target")["errors"] == 1

    @pytest.mark.asyncio
    async def test_one_failing_candidate_does_not_abort_batch(self, session_factory, store):
        retailer_id = await seed_retailer(session_factory, "target")
        now = datetime.utcnow()
        failing_id = await seed_candidate(
            session_factory, retailer_id, TARGET_URL, updated_at=now - timedelta(hours=2)
        )
        other_url = "https://www.target.com/p/other/-/A-2"
        other_id = await seed_candidate(
            session_factory, retailer_id, other_url, product_id="prod-2", updated_at=now - timedelta(hours=1)
        )
        fetcher = FakeFetcher(plain={TARGET_URL: ok(PLAIN_HTML), other_url: ok(LIVE_HTML)})

        checker = build_checker(session_factory, store, fetcher)
        persist = checker._persist

        async def persist_or_fail(candidate_id, outcome):
            if candidate_id == failing_id:
                raise RuntimeError("database unavailable")
            await persist(candidate_id, outcome)

        checker._persist = persist_or_fail
        result = await checker.check_batch(limit=10)

        assert result.checked == 1
        assert result.live_found == 1
        assert (await load_candidate(session_factory, failing_id)).last_checked_at is None
        assert (await load_candidate(session_factory, other_id)).status == "live"

    @pytest.mark.asyncio
    async def test_live_row_persists_when_side_effects_fail(self, session_factory, store):
        class FailingPublisher:
            async def publish(self, **kwargs):
                raise RuntimeError("event table unavailable")

        class FailingOutcomeRecorder:
            async def record_first_seen(self, product_id, retailer_id, seen_at=None):
                raise RuntimeError("outcome table unavailable")

        retailer_id = await seed_retailer(session_factory, "target")
        candidate_id = await seed_candidate(session_factory, retailer_id, TARGET_URL, score=0.5)
        fetcher = FakeFetcher(plain={TARGET_URL: ok(LIVE_HTML)})

        checker = build_checker(session_factory, store, fetcher)
        checker.signal_publisher = FailingPublisher()
        checker.outcome_recorder = FailingOutcomeRecorder()
        result = await checker.check_batch(limit=10)

        assert result.checked == 1
        assert result.live_found == 1
        candidate = await load_candidate(session_factory, candidate_id)
        assert candidate.status == "live"
        assert candidate.score == pytest.approx(0.75)
        assert candidate.last_checked_at is not None

    @pytest.mark.asyncio
    async def test_unknown_retailer_is_checked_without_budget(self, session_factory, store):
        candidate_id = await seed_candidate(session_factory, "ghost-retailer", "https://shop.example.com/x")
        fetcher = FakeFetcher(plain={"https://shop.example.com/x": ok(PLAIN_HTML)})

        result = await build_checker(session_factory, store, fetcher).check_batch(limit=10)

        assert result.checked == 1
        assert store.rate_limit_calls == []
        assert (await load_candidate(session_factory, candidate_id)).status == "valid"


class TestRetailerCache:
    """Tests for the retailer slug cache."""

    @pytest.mark.asyncio
    async def test_cache_loads_once_until_invalidated(self, session_factory, store):
        checker = build_checker(session_factory, store, FakeFetcher())
        target_id = await seed_retailer(session_factory, "target")

        assert await checker.get_retailer_slug(target_id) == "target"

        walmart_id = await seed_retailer(session_factory, "walmart")
        assert await checker.get_retailer_slug(walmart_id) is None

        checker.invalidate_retailer_cache()
        assert await checker.get_retailer_slug(walmart_id) == "walmart"
