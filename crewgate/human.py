"""HumanGate: synchronous approval, choice, input and review requests.

Every request goes through a ``Responder`` (console, scripted answers, or any
object with an ``ask`` method) and is tallied on an explicit
``HumanSession`` so a crew run can report what its reviewers decided.
"""

import json
import queue
import re
import threading
import time
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from rich.console import Console

from .logger import get_logger

_log = get_logger(__name__)

DEFAULT_TIMEOUT = 300.0
DEFAULT_APPROVAL_KEYWORDS = ("yes", "y", "approve", "approved", "ok", "okay", "continue", "lgtm")
DEFAULT_REJECTION_KEYWORDS = ("no", "n", "reject", "rejected", "cancel", "abort", "deny")
INPUT_VALUE_TYPES = {"str", "int", "float", "bool", "json"}

_WORD_RE = re.compile(r"[a-z]+")


class TimeoutPolicy(Enum):
    """How an unanswered approval or review resolves."""

    REJECT = "reject"
    APPROVE = "approve"

    @classmethod
    def parse(cls, value: Union[str, "TimeoutPolicy"]) -> "TimeoutPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Timeout policy must be 'reject' or 'approve', got '{value}'") from None


# ── Requests and responses ───────────────────────────────────


@dataclass(frozen=True)
class GateRequest:
    """What a responder is asked. ``kind`` is approval | choice | input | review."""

    kind: str
    prompt: str
    context: str = ""
    consequences: str = ""
    options: Tuple[str, ...] = ()
    timeout: Optional[float] = None


@dataclass
class ApprovalResponse:
    approved: bool
    reason: str
    response: Optional[str] = None
    timed_out: bool = False


@dataclass
class ChoiceResponse:
    choice: Optional[str]
    valid: bool
    index: Optional[int] = None
    reason: str = ""
    timed_out: bool = False


@dataclass
class InputResponse:
    value: Any
    valid: bool
    reason: str
    raw: Optional[str] = None
    timed_out: bool = False


@dataclass
class ReviewResponse:
    approved: bool
    feedback: Optional[str] = None
    reason: str = ""
    timed_out: bool = False


@dataclass
class InputRules:
    """Validation applied to free-text input."""

    required_keywords: List[str] = field(default_factory=list)
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    value_type: str = "str"

    def __post_init__(self):
        if self.value_type not in INPUT_VALUE_TYPES:
            raise ValueError(
                f"value_type must be one of: {', '.join(sorted(INPUT_VALUE_TYPES))}"
            )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "InputRules":
        """Accept camelCase, hyphenated or snake_case keys."""
        if not data:
            return cls()
        norm = {
            re.sub(r"(?<!^)(?=[A-Z])", "_", k).replace("-", "_").lower(): v
            for k, v in data.items()
        }
        return cls(
            required_keywords=list(norm.get("required_keywords") or []),
            min_length=norm.get("min_length"),
            max_length=norm.get("max_length"),
            pattern=norm.get("pattern"),
            value_type=norm.get("value_type") or norm.get("type") or "str",
        )

    def validate(self, text: str) -> Tuple[bool, str]:
        """Return (valid, reason); the reason names the first unmet rule."""
        if self.min_length is not None and len(text) < self.min_length:
            return False, f"Input too short (minimum {self.min_length} characters)"
        if self.max_length is not None and len(text) > self.max_length:
            return False, f"Input too long (maximum {self.max_length} characters)"
        if self.pattern and not re.search(self.pattern, text):
            return False, f"Input doesn't match required pattern: {self.pattern}"
        if self.required_keywords:
            lowered = text.lower()
            missing = [k for k in self.required_keywords if k.lower() not in lowered]
            if missing:
                return False, f"Missing required keywords: {', '.join(missing)}"
        return True, "Input passes validation"

    def coerce(self, text: str) -> Any:
        """Convert validated text to ``value_type``; raises ValueError."""
        if self.value_type == "int":
            return int(text.strip())
        if self.value_type == "float":
            return float(text.strip())
        if self.value_type == "bool":
            lowered = text.strip().lower()
            if lowered in ("true", "yes", "y", "1", "on"):
                return True
            if lowered in ("false", "no", "n", "0", "off"):
                return False
            raise ValueError(f"Not a boolean: {text!r}")
        if self.value_type == "json":
            return json.loads(text)
        return text


# ── Session tally ────────────────────────────────────────────


@dataclass
class Interaction:
    kind: str
    prompt: str
    response: Optional[str]
    approved: Optional[bool] = None
    valid: Optional[bool] = None
    timed_out: bool = False
    reason: str = ""
    started_at: float = field(default_factory=time.time)
    finished_at: float = field(default_factory=time.time)


class HumanSession:
    """Audit log and counters for one crew run's human interactions."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or f"human-{uuid.uuid4().hex[:8]}"
        self._interactions: List[Interaction] = []
        self._lock = threading.Lock()

    def record(self, interaction: Interaction) -> None:
        with self._lock:
            self._interactions.append(interaction)
        _log.info(
            "Human interaction completed: %s - %s",
            interaction.kind, interaction.reason or "ok",
        )

    @property
    def interactions(self) -> List[Interaction]:
        with self._lock:
            return list(self._interactions)

    @property
    def total(self) -> int:
        with self._lock:
            return len(self._interactions)

    @property
    def approvals(self) -> int:
        with self._lock:
            return sum(1 for i in self._interactions if i.approved is True)

    @property
    def rejections(self) -> int:
        with self._lock:
            return sum(1 for i in self._interactions if i.approved is False)

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            items = list(self._interactions)
        return {
            "session_id": self.session_id,
            "total_interactions": len(items),
            "interaction_types": dict(Counter(i.kind for i in items)),
            "approvals": sum(1 for i in items if i.approved is True),
            "rejections": sum(1 for i in items if i.approved is False),
            "timeouts": sum(1 for i in items if i.timed_out),
            "duration": (items[-1].finished_at - items[0].started_at) if items else 0.0,
        }


# ── Responders ───────────────────────────────────────────────


class Responder(Protocol):
    def ask(self, request: GateRequest, timeout: Optional[float]) -> Optional[str]:
        """Return the reviewer's raw answer, or None if none arrived in time."""
        ...


class ScriptedResponder:
    """Replays canned answers in order; ``None`` entries simulate a timeout."""

    def __init__(self, answers: Iterable[Optional[str]] = ()):
        self._answers: Deque[Optional[str]] = deque(answers)
        self.asked: List[GateRequest] = []
        self._lock = threading.Lock()

    def add(self, *answers: Optional[str]) -> None:
        with self._lock:
            self._answers.extend(answers)

    def ask(self, request: GateRequest, timeout: Optional[float]) -> Optional[str]:
        with self._lock:
            self.asked.append(request)
            if not self._answers:
                raise LookupError(f"No scripted answer left for {request.kind}: {request.prompt}")
            return self._answers.popleft()


class ConsoleResponder:
    """Ask on the terminal via rich, giving up after ``timeout`` seconds.

    One daemon reader thread owns the terminal for the responder's lifetime.
    A read left pending by a timed-out request carries over to the next
    request, so a line typed after a timeout answers the prompt currently
    shown. Lines that arrive while no request is waiting are discarded
    before the next prompt.
    """

    def __init__(self, console: Optional[Console] = None):
        from .rendering import RequestRenderer

        self.console = console or Console()
        self.renderer = RequestRenderer(self.console)
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._lock = threading.Lock()
        self._wanted = threading.Event()
        self._prompt = ""
        self._reading = False
        self._reader: Optional[threading.Thread] = None

    def _read_loop(self) -> None:
        while True:
            self._wanted.wait()
            with self._lock:
                self._wanted.clear()
                self._reading = True
                prompt = self._prompt
            try:
                line: Optional[str] = self.console.input(prompt)
            except (KeyboardInterrupt, EOFError):
                line = None
            with self._lock:
                self._lines.put(line)
                self._reading = False

    def _discard_stale(self) -> None:
        while True:
            try:
                stale = self._lines.get_nowait()
            except queue.Empty:
                return
            _log.debug("Discarding input received with no open request: %r", stale)

    def ask(self, request: GateRequest, timeout: Optional[float]) -> Optional[str]:
        self.renderer.render_request(request)
        prompt = self.renderer.input_prompt(request)
        with self._lock:
            self._discard_stale()
            self._prompt = prompt
            if self._reading:
                # the reader is still blocked on an expired prompt; reuse it
                self.console.print(prompt, end="")
            else:
                self._wanted.set()
            if self._reader is None:
                self._reader = threading.Thread(
                    target=self._read_loop, daemon=True, name="crewgate-input",
                )
                self._reader.start()
        try:
            return self._lines.get(timeout=timeout)
        except queue.Empty:
            self.renderer.render_timeout(timeout)
            return None

    def cancel(self) -> None:
        """Release a request that is waiting for a line."""
        self._lines.put(None)


# ── Gate ─────────────────────────────────────────────────────


class HumanGate:
    """Mediates approval/choice/input/review decisions for running tasks.

    Requests are serialised: concurrent tasks block on the gate one at a
    time so a console reviewer only ever sees one prompt.
    """

    def __init__(
        self,
        responder: Responder,
        *,
        on_timeout: Union[TimeoutPolicy, str],
        session: Optional[HumanSession] = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        auto_approve: bool = False,
        approval_keywords: Sequence[str] = DEFAULT_APPROVAL_KEYWORDS,
        rejection_keywords: Sequence[str] = DEFAULT_REJECTION_KEYWORDS,
    ):
        self.responder = responder
        self.on_timeout = TimeoutPolicy.parse(on_timeout)
        self.session = session if session is not None else HumanSession()
        self.default_timeout = default_timeout
        self.auto_approve = auto_approve
        self.approval_keywords = frozenset(k.lower() for k in approval_keywords)
        self.rejection_keywords = frozenset(k.lower() for k in rejection_keywords)
        self._lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Abandon the open request and refuse every later one.

        Unanswered requests on a closed gate resolve as refusals whatever
        the timeout policy.
        """
        self._closed.set()
        cancel = getattr(self.responder, "cancel", None)
        if cancel is not None:
            cancel()

    def _ask(self, request: GateRequest) -> Tuple[Optional[str], float]:
        timeout = self.default_timeout if request.timeout is None else request.timeout
        if timeout is not None and timeout <= 0:
            timeout = None  # wait indefinitely
        started = time.time()
        with self._lock:
            if self._closed.is_set():
                return None, started
            answer = self.responder.ask(request, timeout)
        return answer, started

    def _timeout_approves(self) -> bool:
        return self.on_timeout == TimeoutPolicy.APPROVE and not self._closed.is_set()

    def effective_timeout(self, timeout: Optional[float] = None) -> float:
        return self.default_timeout if timeout is None else timeout

    # ── Approval ──────────────────────────────────────────────

    def request_approval(
        self,
        prompt: str,
        context: str = "",
        consequences: str = "",
        timeout: Optional[float] = None,
    ) -> ApprovalResponse:
        if self.auto_approve:
            result = ApprovalResponse(True, "Auto-approval enabled", response="auto-approved")
            self.session.record(Interaction(
                kind="approval", prompt=prompt, response=result.response,
                approved=True, reason=result.reason,
            ))
            return result

        request = GateRequest("approval", prompt, context, consequences, timeout=timeout)
        answer, started = self._ask(request)
        if answer is None:
            approved = self._timeout_approves()
            result = ApprovalResponse(
                approved,
                f"No response within {self.effective_timeout(timeout):g}s; "
                f"timeout policy: {self.on_timeout.value}",
                timed_out=True,
            )
        else:
            approved = self._interpret_approval(answer)
            result = ApprovalResponse(
                approved,
                "User approved" if approved else "User rejected",
                response=answer,
            )
        self.session.record(Interaction(
            kind="approval", prompt=prompt, response=answer, approved=result.approved,
            timed_out=result.timed_out, reason=result.reason, started_at=started,
        ))
        return result

    def _interpret_approval(self, answer: str) -> bool:
        words = _WORD_RE.findall(answer.strip().lower())
        if not words:
            return False
        if any(w in self.rejection_keywords for w in words):
            return False
        # Only an explicit approval keyword approves; anything else is a refusal.
        return any(w in self.approval_keywords for w in words)

    # ── Choice ────────────────────────────────────────────────

    def request_choice(
        self,
        prompt: str,
        options: Sequence[str],
        timeout: Optional[float] = None,
    ) -> ChoiceResponse:
        options = tuple(options)
        if not options:
            raise ValueError("request_choice needs at least one option")

        request = GateRequest("choice", prompt, options=options, timeout=timeout)
        answer, started = self._ask(request)
        if answer is None:
            result = ChoiceResponse(
                None, False,
                reason=f"No response within {self.effective_timeout(timeout):g}s",
                timed_out=True,
            )
        else:
            result = self._match_choice(answer, options)
        self.session.record(Interaction(
            kind="choice", prompt=prompt, response=answer, valid=result.valid,
            timed_out=result.timed_out, reason=result.reason, started_at=started,
        ))
        return result

    @staticmethod
    def _match_choice(answer: str, options: Tuple[str, ...]) -> ChoiceResponse:
        cleaned = answer.strip().lower()
        for i, option in enumerate(options):
            if option.strip().lower() == cleaned:
                return ChoiceResponse(option, True, i, "Valid text selection")
        if cleaned.isdigit():
            i = int(cleaned) - 1
            if 0 <= i < len(options):
                return ChoiceResponse(options[i], True, i, "Valid numeric selection")
        return ChoiceResponse(
            None, False,
            reason=f"Invalid selection: {answer}. Please choose from: {', '.join(options)}",
        )

    # ── Free-text input ───────────────────────────────────────

    def request_input(
        self,
        prompt: str,
        rules: Union[InputRules, Dict[str, Any], None] = None,
        timeout: Optional[float] = None,
    ) -> InputResponse:
        if not isinstance(rules, InputRules):
            rules = InputRules.from_dict(rules)

        request = GateRequest("input", prompt, timeout=timeout)
        answer, started = self._ask(request)
        if answer is None:
            result = InputResponse(
                None, False,
                f"No response within {self.effective_timeout(timeout):g}s",
                timed_out=True,
            )
        else:
            valid, reason = rules.validate(answer)
            value = None
            if valid:
                try:
                    value = rules.coerce(answer)
                except ValueError as e:
                    valid, reason = False, f"Input is not a valid {rules.value_type}: {e}"
            result = InputResponse(value, valid, reason, raw=answer)
        self.session.record(Interaction(
            kind="input", prompt=prompt, response=answer, valid=result.valid,
            timed_out=result.timed_out, reason=result.reason, started_at=started,
        ))
        return result

    # ── Output review ─────────────────────────────────────────

    def request_review(
        self,
        content: str,
        prompt: str = "Review the task output",
        timeout: Optional[float] = None,
    ) -> ReviewResponse:
        """Approve as-is with an approval keyword or empty answer; anything else is feedback."""
        if self.auto_approve:
            result = ReviewResponse(True, reason="Auto-approval enabled")
            self.session.record(Interaction(
                kind="review", prompt=prompt, response="auto-approved",
                approved=True, reason=result.reason,
            ))
            return result

        request = GateRequest("review", prompt, context=content, timeout=timeout)
        answer, started = self._ask(request)
        if answer is None:
            result = ReviewResponse(
                self._timeout_approves(),
                reason=f"No response within {self.effective_timeout(timeout):g}s; "
                       f"timeout policy: {self.on_timeout.value}",
                timed_out=True,
            )
        elif not answer.strip() or answer.strip().lower() in self.approval_keywords:
            result = ReviewResponse(True, reason="Content approved without changes")
        else:
            result = ReviewResponse(False, feedback=answer.strip(), reason="Feedback provided")
        self.session.record(Interaction(
            kind="review", prompt=prompt, response=answer, approved=result.approved,
            timed_out=result.timed_out, reason=result.reason, started_at=started,
        ))
        return result
