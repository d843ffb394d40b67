"""Leaves that present something to the participant or capture input.

Drawing is delegated to the renderer collaborator; these actions only decide
what is shown and react to the key and click events of the current tick.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from ...errors import ActionError, DefinitionError, ResourceError
from .base import Action, Container, State, check_duration, check_signal

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..scheduler import TickContext
    from ..tree import Tree


class Visual(Action):
    """Leaf showing one item through the renderer while active."""

    def payload(self) -> dict:
        return {}

    def start(self, ctx: "TickContext") -> None:
        ctx.renderer.show(self.index, self.kind, self.payload())

    def stop(self, ctx: "TickContext") -> None:
        ctx.renderer.hide(self.index)


class Instruction(Visual):
    """Show ``text`` until a confirming key or a click."""

    kind = "instruction"

    def __init__(
        self,
        text: str = "",
        header: str = "",
        keys: Sequence[str] = ("space", "return"),
        **common: Any,
    ) -> None:
        self.text = str(text)
        self.header = str(header)
        self.keys = {str(k).lower() for k in keys}
        super().__init__(**common)

    def payload(self) -> dict:
        return {"text": self.text, "header": self.header}

    def update(self, ctx: "TickContext") -> None:
        for ev in ctx.events:
            if ev.kind == "click" or ev.key.lower() in self.keys:
                ctx.finish(self)
                return


class Fixation(Visual):
    """Fixation cross; runs until its container stops it."""

    kind = "fixation"

    def __init__(self, size: float = 1.0, **common: Any) -> None:
        self.size = check_duration(self.kind, size, "size")
        super().__init__(**common)

    def payload(self) -> dict:
        return {"size": self.size}

    def is_infinite(self, tree: "Tree") -> bool:
        return True


class Image(Visual):
    """Static picture; runs until its container stops it."""

    kind = "image"

    def __init__(self, src: str, width: Optional[float] = None, **common: Any) -> None:
        if not src:
            raise DefinitionError(f"{self.kind}: `src` cannot be empty")
        self.src = str(src)
        self.width = width
        super().__init__(**common)

    def payload(self) -> dict:
        return {"src": self.src, "width": self.width}

    def is_infinite(self, tree: "Tree") -> bool:
        return True

    def start(self, ctx: "TickContext") -> None:
        if not Path(self.src).exists():
            raise ResourceError(f"image '{self.src}' not found")
        super().start(ctx)


class Counter(Visual):
    """Finish after ``count`` clicks, writing the clicks so far to ``out_count``."""

    kind = "counter"

    def __init__(self, count: int = 3, out_count: int = 0, **common: Any) -> None:
        if isinstance(count, bool) or int(count) != count or count < 0:
            raise DefinitionError(f"{self.kind}: `count` must be a non-negative integer")
        self.count = int(count)
        self.out_count = check_signal(self.kind, out_count, "out_count")
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.clicks = 0

    def out_signals(self) -> Set[int]:
        out = super().out_signals()
        if self.out_count:
            out.add(self.out_count)
        return out

    def payload(self) -> dict:
        return {"remaining": self.count - self.clicks}

    def update(self, ctx: "TickContext") -> None:
        for ev in ctx.events:
            if self.clicks >= self.count:
                break
            if ev.kind == "click":
                self.clicks += 1
                ctx.write(self.out_count, self.clicks)
                ctx.renderer.show(self.index, self.kind, self.payload())
        if self.clicks >= self.count:
            ctx.finish(self)


class KeyLogger(Action):
    """Record every key press and forward it to ``out_key``."""

    kind = "key_logger"

    def __init__(self, group: str = "keypress", out_key: int = 0, **common: Any) -> None:
        self.group = str(group)
        self.out_key = check_signal(self.kind, out_key, "out_key")
        super().__init__(**common)

    def out_signals(self) -> Set[int]:
        out = super().out_signals()
        if self.out_key:
            out.add(self.out_key)
        return out

    def is_infinite(self, tree: "Tree") -> bool:
        return True

    def start(self, ctx: "TickContext") -> None:
        if self.group:
            ctx.record(self.group, "event", "start")

    def update(self, ctx: "TickContext") -> None:
        for ev in ctx.events:
            if ev.kind != "key":
                continue
            ctx.write(self.out_key, ev.key)
            if self.group:
                ctx.record(self.group, "key", ev.key)

    def stop(self, ctx: "TickContext") -> None:
        if self.group:
            ctx.record(self.group, "event", "stop")


class Reaction(Action):
    """Score key presses against target times.

    A press within ``tol`` seconds after a target counts as a hit with
    reaction time ``press - target``; targets passed without a press are
    missed. On stop accuracy (hits / presses), recall (hits / targets) and
    the mean reaction time are recorded and written to their outputs.
    """

    kind = "reaction"

    def __init__(
        self,
        times: Sequence[float],
        keys: Sequence[str] = (),
        tol: float = 2.0,
        group: str = "reaction",
        out_rt: int = 0,
        out_accuracy: int = 0,
        out_mean_rt: int = 0,
        out_recall: int = 0,
        **common: Any,
    ) -> None:
        if not group:
            raise DefinitionError(f"{self.kind}: `group` cannot be empty")
        self.times = sorted(check_duration(self.kind, t, "times") for t in times)
        self.keys = {str(k).lower() for k in keys}
        self.tol = check_duration(self.kind, tol, "tol")
        self.group = str(group)
        self.out_rt = check_signal(self.kind, out_rt, "out_rt")
        self.out_accuracy = check_signal(self.kind, out_accuracy, "out_accuracy")
        self.out_mean_rt = check_signal(self.kind, out_mean_rt, "out_mean_rt")
        self.out_recall = check_signal(self.kind, out_recall, "out_recall")
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.next: Optional[int] = 0 if getattr(self, "times", None) else None
        self.presses: List[float] = []
        self.hits: List[bool] = []
        self.rts: List[float] = []

    def out_signals(self) -> Set[int]:
        outs = {self.out_rt, self.out_accuracy, self.out_mean_rt, self.out_recall}
        return super().out_signals() | {i for i in outs if i}

    def is_infinite(self, tree: "Tree") -> bool:
        return True

    def start(self, ctx: "TickContext") -> None:
        ctx.record(self.group, "event", "start")

    def update(self, ctx: "TickContext") -> None:
        for ev in ctx.events:
            if ev.kind != "key":
                continue
            if self.keys and ev.key.lower() not in self.keys:
                continue
            start = self.started_at if self.started_at is not None else ctx.now
            self.press(ctx, ev.time - start)

    def press(self, ctx: "TickContext", t: float) -> None:
        self.presses.append(t)
        hit = False
        while self.next is not None:
            target = self.times[self.next]
            if t < target:
                break
            self.next = self.next + 1 if self.next + 1 < len(self.times) else None
            if t <= target + self.tol:
                hit = True
                rt = t - target
                self.rts.append(rt)
                ctx.write(self.out_rt, rt)
                break
        self.hits.append(hit)
        if hit:
            ctx.record(self.group, "correct", [t, self.rts[-1]])
        else:
            ctx.record(self.group, "incorrect", [t])

    def scores(self) -> dict:
        accuracy = len(self.rts) / len(self.hits) if self.hits else float("nan")
        recall = len(self.rts) / len(self.times) if self.times else float("nan")
        mean_rt = float(np.mean(self.rts)) if self.rts else float("nan")
        return {"accuracy": accuracy, "mean_rt": mean_rt, "recall": recall}

    def stop(self, ctx: "TickContext") -> None:
        scores = self.scores()
        ctx.record(self.group, "event", "stop")
        for key, value in scores.items():
            ctx.record(self.group, key, value)
        ctx.write(self.out_accuracy, scores["accuracy"])
        ctx.write(self.out_mean_rt, scores["mean_rt"])
        ctx.write(self.out_recall, scores["recall"])


def _until(kind: str, until: Any) -> Tuple[str, int]:
    """Normalise ``until`` to ``("none" | "hits" | "clicks", count)``."""

    if isinstance(until, dict):
        if len(until) != 1:
            raise DefinitionError(f"{kind}: `until` mapping needs exactly one key")
        ((mode, count),) = until.items()
    else:
        mode, count = until, 1
    mode = {"hit": "hits", "click": "clicks"}.get(str(mode), str(mode))
    if mode not in ("none", "hits", "clicks"):
        raise DefinitionError(f"{kind}: unknown `until` {until!r}")
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise DefinitionError(f"{kind}: `until` count must be a positive integer")
    return mode, count


class Pointer(Container):
    """Capture clicks on the inner action.

    Each click writes its reaction time, coordinates (as ``"x,y"`` text),
    score and hit flag. Without a ``mask`` every click scores 1; with one,
    the score is the mask value under the click, a ``.npy`` array whose
    width is scaled to ``mask_width`` when given. ``until`` ends the action
    after a number of clicks or hits; otherwise it ends with its inner child.
    """

    kind = "pointer"
    CHILDREN = ("inner",)

    def __init__(
        self,
        inner: int,
        group: str = "",
        until: Any = "none",
        mask: Optional[str] = None,
        mask_width: Optional[float] = None,
        out_rt: int = 0,
        out_coord: int = 0,
        out_accuracy: int = 0,
        out_hit: int = 0,
        **common: Any,
    ) -> None:
        self.inner = inner
        self.group = str(group or "")
        self.until, self.target = _until(self.kind, until)
        self.mask_src = str(mask) if mask else None
        self.mask_width = None
        if mask_width is not None:
            self.mask_width = check_duration(self.kind, mask_width, "mask_width")
            if self.mask_width == 0:
                raise DefinitionError(f"{self.kind}: `mask_width` must be positive")
        self.out_rt = check_signal(self.kind, out_rt, "out_rt")
        self.out_coord = check_signal(self.kind, out_coord, "out_coord")
        self.out_accuracy = check_signal(self.kind, out_accuracy, "out_accuracy")
        self.out_hit = check_signal(self.kind, out_hit, "out_hit")
        outs = (self.out_rt, self.out_coord, self.out_accuracy, self.out_hit)
        if not (any(outs) or self.group):
            raise DefinitionError(f"{self.kind}: needs an `out_*` signal or a `group`")
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.clicks = 0
        self.hits = 0
        self.mask: Optional[np.ndarray] = None

    def shift(self, offset: int) -> None:
        super().shift(offset)
        self.inner += offset

    def out_signals(self) -> Set[int]:
        outs = {self.out_rt, self.out_coord, self.out_accuracy, self.out_hit}
        return super().out_signals() | {i for i in outs if i}

    def is_infinite(self, tree: "Tree") -> bool:
        return self.until == "none" and tree[self.inner].is_infinite(tree)

    def start(self, ctx: "TickContext") -> None:
        if self.mask_src is not None:
            try:
                mask = np.load(self.mask_src)
            except (OSError, ValueError) as exc:
                raise ResourceError(f"{self.kind}: cannot load mask '{self.mask_src}': {exc}") from exc
            if mask.ndim != 2:
                raise ResourceError(f"{self.kind}: mask '{self.mask_src}' is not a 2-D array")
            self.mask = mask.astype(float)
        ctx.activate(self.inner, self.anchor)

    def score(self, x: float, y: float) -> float:
        if self.mask is None:
            return 1.0
        rows, cols = self.mask.shape
        scale = self.mask_width / cols if self.mask_width else 1.0
        row, col = int(y // scale), int(x // scale)
        if 0 <= row < rows and 0 <= col < cols:
            return float(self.mask[row, col])
        return 0.0

    def update(self, ctx: "TickContext") -> None:
        for ev in ctx.events:
            if ev.kind == "click" and self.click(ctx, ev):
                ctx.finish(self)
                return
        inner = ctx.node(self.inner)
        if inner.state is State.DONE and not self.escalated(ctx, [self.inner]):
            end = inner.finished_at
            ctx.finish(self, at=ctx.now if end is None else end)

    def click(self, ctx: "TickContext", ev: Any) -> bool:
        """Report one click and return ``True`` when ``until`` is satisfied."""

        start = self.started_at if self.started_at is not None else ctx.now
        rt = ev.time - start
        score = self.score(ev.x, ev.y)
        hit = score > 0.0
        ctx.write(self.out_rt, rt)
        ctx.write(self.out_coord, f"{ev.x:g},{ev.y:g}")
        ctx.write(self.out_accuracy, score)
        ctx.write(self.out_hit, hit)
        if self.group:
            ctx.record(self.group, "click", {"x": ev.x, "y": ev.y, "rt": rt, "score": score})
        self.clicks += 1
        self.hits += int(hit)
        if self.until == "clicks":
            return self.clicks >= self.target
        if self.until == "hits":
            return self.hits >= self.target
        return False


QUESTION_TYPES = ("single_line", "multi_line", "single_choice", "multi_choice", "slider")


def _question_item(kind: str, entry: Any) -> Dict[str, Any]:
    if not isinstance(entry, dict) or len(entry) != 1:
        raise DefinitionError(f"{kind}: every item must be a mapping with one type key")
    ((qtype, body),) = entry.items()
    if qtype not in QUESTION_TYPES:
        raise DefinitionError(f"{kind}: unknown item type {qtype!r}")
    body = dict(body or {})
    item = {"type": qtype, "id": str(body.pop("id", "")), "prompt": str(body.pop("prompt", ""))}
    if not item["id"]:
        raise DefinitionError(f"{kind}: every item needs an `id`")
    if qtype == "multi_line":
        item["lines"] = int(body.pop("lines", 3))
    elif qtype in ("single_choice", "multi_choice"):
        options = [str(o) for o in body.pop("options", [])]
        if not options:
            raise DefinitionError(f"{kind}: item '{item['id']}' needs `options`")
        item["options"] = options
        item["columns"] = int(body.pop("columns", 10))
    elif qtype == "slider":
        try:
            lo, hi = (float(v) for v in body.pop("range"))
            step = float(body.pop("step"))
        except (KeyError, TypeError, ValueError):
            raise DefinitionError(
                f"{kind}: slider '{item['id']}' needs `range: [lo, hi]` and `step`"
            ) from None
        if not lo < hi or step <= 0:
            raise DefinitionError(f"{kind}: slider '{item['id']}' has an empty range or step")
        item.update(range=[lo, hi], step=step, precision=int(body.pop("precision", 3)))
    if body:
        raise DefinitionError(f"{kind}: item '{item['id']}' has unknown fields {sorted(body)}")
    return item


class Question(Visual):
    """Questionnaire closed by a ``submit`` event.

    ``answer`` events set the answer of the item whose id is the event key.
    On submit every answer is recorded under ``group`` with the item id as
    the entry name, in item order.
    """

    kind = "question"

    def __init__(self, items: Sequence[Any], group: str = "questions", **common: Any) -> None:
        if not group:
            raise DefinitionError(f"{self.kind}: `group` cannot be empty")
        self.group = str(group)
        self.items = [_question_item(self.kind, entry) for entry in items]
        ids = [item["id"] for item in self.items]
        if len(set(ids)) != len(ids):
            raise DefinitionError(f"{self.kind}: item ids must be unique")
        super().__init__(**common)

    def reset(self) -> None:
        super().reset()
        self.answers: Dict[str, Any] = {}
        for item in getattr(self, "items", []):
            if item["type"] == "multi_choice":
                default: Any = []
            elif item["type"] == "single_choice":
                default = None
            elif item["type"] == "slider":
                default = round(item["range"][0], item["precision"])
            else:
                default = ""
            self.answers[item["id"]] = default

    def payload(self) -> dict:
        return {"items": self.items}

    def answer(self, qid: str, value: Any) -> None:
        item = next((i for i in self.items if i["id"] == qid), None)
        if item is None:
            raise ActionError(f"{self.kind}: no item with id '{qid}'")
        qtype = item["type"]
        if qtype in ("single_line", "multi_line"):
            value = "" if value is None else str(value)
        elif qtype == "single_choice":
            if value is not None and value not in item["options"]:
                raise ActionError(f"{self.kind}: {value!r} is not an option of '{qid}'")
        elif qtype == "multi_choice":
            chosen = list(value or [])
            unknown = [v for v in chosen if v not in item["options"]]
            if unknown:
                raise ActionError(f"{self.kind}: {unknown!r} are not options of '{qid}'")
            value = [o for o in item["options"] if o in chosen]
        else:
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ActionError(f"{self.kind}: slider '{qid}' needs a number, got {value!r}") from None
            lo, hi = item["range"]
            number = lo + round((min(max(number, lo), hi) - lo) / item["step"]) * item["step"]
            value = round(min(number, hi), item["precision"])
        self.answers[qid] = value

    def update(self, ctx: "TickContext") -> None:
        for ev in ctx.events:
            if ev.kind == "answer":
                self.answer(ev.key, ev.value)
            elif ev.kind == "submit":
                for item in self.items:
                    ctx.record(self.group, item["id"], self.answers[item["id"]])
                ctx.finish(self)
                return
