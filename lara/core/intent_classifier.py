from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional, Protocol

from lara.core.circuit_breaker import BreakerConfig, CircuitBreaker
from lara.core.config import ClassifierConfig
from lara.core.errors import LaraError
from lara.core.events import NullEventLogger
from lara.core.intents import LOW_CONFIDENCE_THRESHOLD, Intent, intent_to_dict, unknown_intent
from lara.core.llm_classifier import LLMClassifierConfig, LLMIntentClassifier
from lara.core.logger import get_logger
from lara.core.pattern_classifier import PatternIntentClassifier


class IntentClassifier(Protocol):
    name: str

    def classify(self, transcript: str) -> Intent: ...


class FallbackIntentClassifier:
    """
    Two-tier chain. The primary tier gets one bounded attempt (hard timeout, circuit
    breaker); any failure, a schema violation or a low-confidence answer falls
    through to the pattern tier. classify() never raises.
    """

    name = "chain"

    def __init__(
        self,
        primary: Optional[IntentClassifier],
        fallback: Optional[PatternIntentClassifier] = None,
        *,
        timeout_seconds: float = 3.0,
        low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD,
        breaker: Optional[CircuitBreaker] = None,
        event_logger=None,
        logger=None,
    ):
        self.primary = primary
        self.fallback = fallback or PatternIntentClassifier()
        self.timeout_seconds = float(timeout_seconds)
        self.low_confidence_threshold = float(low_confidence_threshold)
        self.breaker = breaker
        self.event_logger = event_logger or NullEventLogger()
        self.logger = logger or get_logger("classifier")
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="classifier")

    def classify(self, transcript: str, trace_id: Optional[str] = None) -> Intent:
        trace_id = trace_id or uuid.uuid4().hex
        text = (transcript or "").strip()
        if not text:
            self.event_logger.log(trace_id, "classifier.empty", {})
            return unknown_intent("")

        primary_intent = self._try_primary(trace_id, text)
        if primary_intent is not None and primary_intent.confidence >= self.low_confidence_threshold:
            return primary_intent

        try:
            intent, rule = self.fallback.match(text)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"[{trace_id}] fallback classifier failed: {e}")
            intent, rule = unknown_intent(text), None

        if primary_intent is not None and intent.confidence <= primary_intent.confidence:
            # Both tiers unsure; keep the primary's guess.
            return primary_intent

        self.event_logger.log(trace_id, "classifier.fallback", {"rule": rule, "intent": intent_to_dict(intent)})
        return intent

    def status(self) -> dict:
        return {
            "primary": getattr(self.primary, "name", None),
            "fallback": self.fallback.name,
            "breaker": self.breaker.snapshot() if self.breaker else None,
        }

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _try_primary(self, trace_id: str, text: str) -> Optional[Intent]:
        if self.primary is None:
            return None
        if self.breaker is not None and not self.breaker.allow():
            self.event_logger.log(trace_id, "classifier.primary.skipped", {"breaker": self.breaker.state().value})
            return None

        fut = self._executor.submit(self.primary.classify, text)
        reason: str
        try:
            intent = fut.result(timeout=self.timeout_seconds)
        except FutureTimeout:
            fut.cancel()
            reason = "timeout"
        except LaraError as e:
            reason = e.code
        except Exception as e:  # noqa: BLE001
            reason = f"error: {e}"
        else:
            if self.breaker is not None:
                self.breaker.record_success()
            self.event_logger.log(trace_id, "classifier.primary.ok", {"intent": intent_to_dict(intent)})
            return intent

        if self.breaker is not None:
            self.breaker.record_failure()
        self.event_logger.log(trace_id, "classifier.primary.fail", {"reason": reason})
        self.logger.warning(f"[{trace_id}] primary classifier failed ({reason}); using patterns")
        return None


def build_classifier(cfg: ClassifierConfig, *, event_logger=None, logger=None) -> FallbackIntentClassifier:
    primary: Optional[IntentClassifier] = None
    if cfg.primary_enabled:
        primary = LLMIntentClassifier(
            LLMClassifierConfig(
                base_url=cfg.base_url,
                model=cfg.model,
                timeout_seconds=cfg.timeout_seconds,
                temperature=cfg.temperature,
                max_tokens=cfg.max_tokens,
                api_key=cfg.api_key,
            )
        )
    events = event_logger or NullEventLogger()
    breaker = CircuitBreaker(
        BreakerConfig(
            failures=cfg.breaker.failures,
            window_seconds=cfg.breaker.window_seconds,
            cooldown_seconds=cfg.breaker.cooldown_seconds,
        ),
        name="classifier.primary",
        on_state_change=lambda name, state: events.log("classifier", "breaker.state", {"breaker": name, "state": state.value}),
    )
    return FallbackIntentClassifier(
        primary,
        PatternIntentClassifier(),
        timeout_seconds=cfg.timeout_seconds,
        low_confidence_threshold=cfg.low_confidence_threshold,
        breaker=breaker,
        event_logger=event_logger,
        logger=logger,
    )
