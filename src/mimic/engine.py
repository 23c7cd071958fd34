"""UCI protocol client for an external analysis engine.

Owns one engine subprocess and speaks the line-oriented UCI protocol with it
directly: startup from a ranked list of candidate commands, the ``uci`` /
``uciok`` handshake, buffering of commands issued before the engine is ready,
search cancellation and streaming ``info`` parsing.

Results are pushed to a callback registered with :meth:`UciClient.evaluate`
as they arrive. :meth:`UciClient.analyse` wraps that in an awaitable for
callers that only want one sufficiently deep sample.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import re
import shlex
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Callable

import chess

logger = logging.getLogger(__name__)

# Large centipawn value used as a stand-in for forced mate.
MATE_CP = 10_000

QUIT_TIMEOUT = 2.0

_UCI_MOVE_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$")
_DEPTH_RE = re.compile(r"\bdepth (\d+)\b")
_CP_RE = re.compile(r"\bscore cp (-?\d+)\b")
_MATE_RE = re.compile(r"\bscore mate (-?\d+)\b")
_MULTIPV_RE = re.compile(r"\bmultipv (\d+)\b")
_PV_RE = re.compile(r"\bpv (.+)$")


@dataclass
class AnalysisSample:
    """One ``info`` line worth of analysis.

    Scores are from the point of view of the side to move, as the engine
    reports them.
    """
    depth: int
    score_cp: int | None
    score_mate: int | None
    pv: list[str] = field(default_factory=list)
    best_move: str | None = None

    @property
    def evaluation(self) -> int:
        """Single centipawn scalar, with mate mapped to +/- ``MATE_CP``."""
        if self.score_mate is not None:
            if self.score_mate > 0:
                return MATE_CP - self.score_mate
            return -MATE_CP - self.score_mate
        if self.score_cp is not None:
            return self.score_cp
        return 0


class EngineState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    READY = "ready"
    EVALUATING = "evaluating"
    UNAVAILABLE = "unavailable"
    TERMINATED = "terminated"


class EngineNotReadyError(RuntimeError):
    """The engine is not started, unavailable, or has gone away."""


class SearchSupersededError(RuntimeError):
    """A pending :meth:`UciClient.analyse` was replaced by a newer request."""


SampleCallback = Callable[[AnalysisSample], None]


def parse_info_line(line: str) -> AnalysisSample | None:
    """Parse a UCI ``info`` line into a sample.

    Returns None for anything that is not a scored main-line ``info`` line.
    PV parsing stops at the first token that is not a UCI move.
    """
    if not line.startswith("info ") or line.startswith("info string"):
        return None
    depth_match = _DEPTH_RE.search(line)
    if depth_match is None:
        return None
    multipv = _MULTIPV_RE.search(line)
    if multipv is not None and multipv.group(1) != "1":
        return None

    score_cp = score_mate = None
    mate_match = _MATE_RE.search(line)
    cp_match = _CP_RE.search(line)
    if mate_match is not None:
        score_mate = int(mate_match.group(1))
    elif cp_match is not None:
        score_cp = int(cp_match.group(1))
    else:
        return None

    pv: list[str] = []
    pv_match = _PV_RE.search(line)
    if pv_match is not None:
        for token in pv_match.group(1).split():
            if not _UCI_MOVE_RE.match(token):
                break
            pv.append(token)

    return AnalysisSample(
        depth=int(depth_match.group(1)),
        score_cp=score_cp,
        score_mate=score_mate,
        pv=pv,
        best_move=pv[0] if pv else None,
    )


class UciClient:
    """Drives one external UCI engine process.

    All command methods are synchronous and non-blocking; the only consumer
    of engine output is the reader task, which runs on the same event loop,
    so the callback swap in :meth:`evaluate` can never interleave with line
    delivery.
    """

    def __init__(
        self,
        commands: list[str] | None = None,
        *,
        options: dict[str, int | str] | None = None,
        handshake_timeout: float = 5.0,
        poll_interval: float = 0.1,
    ):
        self._commands = list(commands) if commands else ["stockfish"]
        self._options = dict(options or {})
        self._handshake_timeout = handshake_timeout
        self._poll_interval = poll_interval
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._state = EngineState.UNINITIALIZED
        self._queue: deque[str] = deque()
        self._on_sample: SampleCallback | None = None
        self._outstanding = 0
        self._last_sample: AnalysisSample | None = None
        self._last_best_move: str | None = None
        self._waiter: asyncio.Future | None = None
        self._waiter_depth = 0
        self._engine_name: str | None = None

    # -- properties ---------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state in (EngineState.READY, EngineState.EVALUATING)

    @property
    def engine_name(self) -> str | None:
        return self._engine_name

    @property
    def last_sample(self) -> AnalysisSample | None:
        return self._last_sample

    @property
    def last_best_move(self) -> str | None:
        return self._last_best_move

    # -- lifecycle ----------------------------------------------------------

    async def init(self) -> bool:
        """Start the first working candidate engine and complete the handshake.

        Returns False when every candidate fails (state ``UNAVAILABLE``) or
        when the handshake times out; in the latter case the process is kept
        and commands keep queueing until ``uciok`` shows up.
        """
        if self._state is EngineState.TERMINATED and self._process is not None:
            await self._discard(self._process)
        if self._process is not None:
            return self.is_ready

        self._state = EngineState.LOADING
        for command in self._commands:
            try:
                process = await self._spawn(command)
            except (OSError, ValueError) as e:
                logger.warning("Could not start engine %r: %s", command, e)
                continue

            self._process = process
            self._reader_task = asyncio.create_task(self._read_loop(process))
            if await self._handshake():
                logger.info("Engine %r ready (%s)", command, self._engine_name or "unnamed")
                return True
            if self._state is EngineState.AWAITING_HANDSHAKE:
                logger.warning(
                    "Engine %r did not complete handshake within %.1fs",
                    command, self._handshake_timeout,
                )
                return False
            logger.warning("Engine %r exited during handshake", command)
            await self._discard(process)
            self._state = EngineState.LOADING

        logger.error("All engine candidates failed to start")
        self._state = EngineState.UNAVAILABLE
        return False

    async def quit(self) -> None:
        """Terminate the engine and reset to ``UNINITIALIZED``."""
        process = self._process
        reader = self._reader_task
        self._process = None
        self._reader_task = None
        self._queue.clear()
        self._on_sample = None
        self._outstanding = 0
        self._fail_waiter(EngineNotReadyError("Engine shut down"))
        self._state = EngineState.UNINITIALIZED

        if process is not None and process.returncode is None:
            try:
                process.stdin.write(b"quit\n")
                await asyncio.wait_for(process.wait(), timeout=QUIT_TIMEOUT)
            except (asyncio.TimeoutError, BrokenPipeError, ConnectionResetError):
                logger.warning("Engine did not exit on quit, killing it")
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

    # -- commands -----------------------------------------------------------

    def evaluate(self, fen: str, depth: int, on_sample: SampleCallback) -> None:
        """Start a depth-bounded search, replacing any search in flight.

        ``on_sample`` is registered before any command goes out, so samples
        of an earlier request can never reach it.
        """
        self._require_started()
        board = chess.Board(fen)
        if not board.is_valid():
            raise ValueError(f"Illegal position: {fen}")

        self._on_sample = on_sample
        self._fail_waiter(SearchSupersededError("Superseded by a newer evaluation"))
        self._last_sample = None
        self._post("stop")
        self._post(f"position fen {board.fen()}")
        self._post(f"go depth {depth}")

    def stop(self) -> None:
        self._require_started()
        self._post("stop")

    async def analyse(
        self,
        fen: str,
        depth: int,
        min_depth: int | None = None,
        on_sample: SampleCallback | None = None,
    ) -> AnalysisSample:
        """Evaluate and wait for the first sample at least ``min_depth`` deep.

        Resolves with the last sample when the search finishes before that
        depth. There is no timeout; wrap in ``asyncio.wait_for`` if needed.
        """
        future = asyncio.get_running_loop().create_future()
        self.evaluate(fen, depth, on_sample or (lambda sample: None))
        self._waiter = future
        self._waiter_depth = depth if min_depth is None else min_depth
        return await future

    # -- internals ----------------------------------------------------------

    async def _spawn(self, command: str) -> asyncio.subprocess.Process:
        argv = shlex.split(command)
        if not argv:
            raise ValueError("empty engine command")
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )

    async def _handshake(self) -> bool:
        self._state = EngineState.AWAITING_HANDSHAKE
        try:
            self._write("uci")
        except EngineNotReadyError:
            return False
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._handshake_timeout
        while loop.time() < deadline:
            if self.is_ready:
                return True
            if self._state is EngineState.TERMINATED:
                return False
            await asyncio.sleep(self._poll_interval)
        return self.is_ready

    async def _discard(self, process: asyncio.subprocess.Process) -> None:
        if self._process is process:
            self._process = None
        reader = self._reader_task
        self._reader_task = None
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        try:
            while True:
                raw = await process.stdout.readline()
                if not raw:
                    break
                self._handle_line(raw.decode("utf-8", errors="replace").strip())
        except (OSError, ValueError) as e:
            logger.error("Engine output stream failed: %s", e)
        if self._process is process:
            logger.error("Engine process exited unexpectedly")
            self._state = EngineState.TERMINATED
            self._outstanding = 0
            self._fail_waiter(EngineNotReadyError("Engine terminated"))

    def _require_started(self) -> None:
        if self._state in (
            EngineState.UNINITIALIZED,
            EngineState.UNAVAILABLE,
            EngineState.TERMINATED,
        ):
            raise EngineNotReadyError(f"Engine not ready ({self._state.value})")

    def _post(self, command: str) -> None:
        if self.is_ready:
            self._write(command)
        else:
            self._queue.append(command)

    def _write(self, command: str) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise EngineNotReadyError("Engine not started")
        try:
            process.stdin.write(f"{command}\n".encode())
        except (BrokenPipeError, ConnectionResetError) as e:
            self._state = EngineState.TERMINATED
            raise EngineNotReadyError("Engine connection lost") from e
        if command.startswith("go"):
            self._outstanding += 1
            self._state = EngineState.EVALUATING

    def _handle_line(self, line: str) -> None:
        if not line:
            return
        if line == "uciok":
            self._on_handshake()
        elif line.startswith("id name "):
            self._engine_name = line[len("id name "):]
        elif line.startswith("bestmove"):
            self._on_bestmove(line)
        elif line.startswith("info"):
            sample = parse_info_line(line)
            # Only the newest search may deliver; older ones are still
            # draining until their bestmove arrives.
            if sample is not None and self._outstanding == 1:
                self._deliver(sample)

    def _on_handshake(self) -> None:
        if self._state is not EngineState.AWAITING_HANDSHAKE:
            return
        self._state = EngineState.READY
        for name, value in self._options.items():
            self._write(f"setoption name {name} value {value}")
        while self._queue:
            self._write(self._queue.popleft())

    def _on_bestmove(self, line: str) -> None:
        if self._outstanding == 0:
            return
        self._outstanding -= 1
        if self._outstanding:
            return
        if self._state is EngineState.EVALUATING:
            self._state = EngineState.READY

        parts = line.split()
        best = parts[1] if len(parts) > 1 and _UCI_MOVE_RE.match(parts[1]) else None
        self._last_best_move = best

        waiter = self._waiter
        if waiter is None or waiter.done():
            return
        sample = self._last_sample
        if sample is None:
            sample = AnalysisSample(
                depth=0, score_cp=None, score_mate=None,
                pv=[best] if best else [], best_move=best,
            )
        elif sample.best_move is None and best is not None:
            sample = replace(sample, best_move=best)
        self._waiter = None
        waiter.set_result(sample)

    def _deliver(self, sample: AnalysisSample) -> None:
        self._last_sample = sample
        callback = self._on_sample
        if callback is not None:
            try:
                callback(sample)
            except Exception:
                logger.exception("Analysis callback failed")

        waiter = self._waiter
        if (
            waiter is not None
            and not waiter.done()
            and sample.best_move is not None
            and sample.depth >= self._waiter_depth
        ):
            self._waiter = None
            waiter.set_result(sample)

    def _fail_waiter(self, exc: Exception) -> None:
        waiter = self._waiter
        self._waiter = None
        if waiter is not None and not waiter.done():
            waiter.set_exception(exc)
