"""Session recording for later inspection of a task run.

The ``ReplayBuffer`` subscribes to a run's ``EventBus`` and captures
every event, plus the screenshots the Director hands it, into a
structured session directory on disk.  It holds events in memory while
a session is active and flushes them when ``stop_session`` is called;
screenshots are written immediately to avoid accumulating image bytes
in RAM.

Session directory layout::

    sessions/session_YYYYMMDD_HHMMSS_<task_id>/
        screenshots/     # JPEG screenshots (vision mode only)
            000001.jpg
            ...
        events.jsonl     # One serialised Event per line
        metadata.json    # SessionMetadata as JSON

Typical usage::

    from webtask_agent.config.settings import get_default_settings
    from webtask_agent.core.replay_buffer import ReplayBuffer

    buf = ReplayBuffer(get_default_settings())
    buf.start_session(bus, task_id="a1b2c3d4", task_description="demo")
    # ... run the task ...
    session_dir = buf.stop_session(outcome="completed")
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from webtask_agent.config.settings import Settings
from webtask_agent.core.event_bus import EventBus
from webtask_agent.models.events import Event

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class SessionMetadata:
    """Metadata for a recorded session.

    Attributes:
        session_id: Unique identifier for this session.
        task_id: Identifier of the recorded task run.
        start_time: Unix timestamp when the session started.
        end_time: Unix timestamp when the session stopped.
        task_description: The natural-language task.
        outcome: Terminal outcome of the run (``completed``,
            ``aborted``, ``failed``), or empty if unknown.
        event_count: Total number of events recorded.
        screenshot_count: Total number of screenshots written.
    """

    session_id: str
    task_id: str = ""
    start_time: float = 0.0
    end_time: float = 0.0
    task_description: str = ""
    outcome: str = ""
    event_count: int = 0
    screenshot_count: int = 0


# ---------------------------------------------------------------------------
# ReplayBuffer
# ---------------------------------------------------------------------------


class ReplayBuffer:
    """Records the events and screenshots of a task run.

    Args:
        settings: Injected application settings providing
            ``session_dir``.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings: Settings = settings
        self._events: list[dict[str, Any]] = []
        self._metadata: SessionMetadata | None = None
        self._session_dir: Path | None = None
        self._unsubscribe: Callable[[], None] | None = None

    # -- Session lifecycle ---------------------------------------------------

    def start_session(
        self,
        bus: EventBus,
        task_id: str = "",
        task_description: str = "",
        session_id: str = "",
    ) -> str:
        """Start recording the events published on *bus*.

        Creates the session directory on disk and subscribes to every
        event type.

        Args:
            bus: The run's event bus.
            task_id: Identifier of the run being recorded.
            task_description: The natural-language task.
            session_id: Optional identifier.  When empty, one is
                generated from the current UTC time and *task_id*.

        Returns:
            The session identifier string.

        Raises:
            RuntimeError: If a session is already in progress.
            OSError: The session directory could not be created.  No
                session is started.
        """
        if self._metadata is not None:
            raise RuntimeError(
                "A session is already in progress.  Call stop_session() before starting a new one."
            )

        if not session_id:
            now = datetime.now(tz=timezone.utc)
            session_id = now.strftime("session_%Y%m%d_%H%M%S")
            if task_id:
                session_id += f"_{task_id}"

        session_dir = Path(self._settings.session_dir) / session_id
        (session_dir / "screenshots").mkdir(parents=True, exist_ok=True)

        self._session_dir = session_dir
        self._metadata = SessionMetadata(
            session_id=session_id,
            task_id=task_id,
            start_time=time.time(),
            task_description=task_description,
        )

        self._events = []
        self._unsubscribe = bus.subscribe(None, self.record_event)
        logger.info("Recording session %s to %s", session_id, self._session_dir)
        return session_id

    def record_event(self, event: Event) -> None:
        """Buffer one event for ``events.jsonl``.

        Raises:
            RuntimeError: If no session is currently active.
        """
        if self._metadata is None:
            raise RuntimeError("No active session.  Call start_session() first.")
        self._events.append(event.to_dict())
        self._metadata.event_count += 1

    def record_screenshot(self, jpeg: bytes, iteration_id: str = "") -> Path:
        """Write a JPEG screenshot with a six-digit zero-padded filename.

        Args:
            jpeg: Encoded JPEG bytes.
            iteration_id: Iteration the screenshot belongs to (logged).

        Returns:
            Path of the written file.

        Raises:
            RuntimeError: If no session is currently active.
            OSError: The file could not be written.
        """
        if self._metadata is None or self._session_dir is None:
            raise RuntimeError("No active session.  Call start_session() first.")
        self._metadata.screenshot_count += 1
        path = self._session_dir / "screenshots" / f"{self._metadata.screenshot_count:06d}.jpg"
        path.write_bytes(jpeg)
        logger.debug("Saved screenshot %s for iteration %s", path.name, iteration_id)
        return path

    def stop_session(self, outcome: str = "") -> Path:
        """Stop recording and finalise the session.

        Writes ``events.jsonl`` and ``metadata.json`` inside the session
        directory and unsubscribes from the bus.

        Args:
            outcome: Terminal outcome of the run.

        Returns:
            Path to the session directory.

        Raises:
            RuntimeError: If no session is currently active.
            OSError: The session files could not be written.  The
                session is closed regardless.
        """
        if self._metadata is None or self._session_dir is None:
            raise RuntimeError("No active session.  Call start_session() first.")

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        metadata = self._metadata
        session_dir = self._session_dir
        events = self._events

        # Clear internal state so a new session can start.
        self._events = []
        self._metadata = None
        self._session_dir = None

        metadata.end_time = time.time()
        metadata.outcome = outcome

        # -- Events ----------------------------------------------------------
        events_path = session_dir / "events.jsonl"
        with events_path.open("w", encoding="utf-8") as fh:
            for event in events:
                fh.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")

        # -- Metadata --------------------------------------------------------
        meta_path = session_dir / "metadata.json"
        with meta_path.open("w", encoding="utf-8") as fh:
            json.dump(asdict(metadata), fh, indent=2, ensure_ascii=False)
            fh.write("\n")

        return session_dir

    # -- Replay / inspection -------------------------------------------------

    @staticmethod
    def load_session(session_dir: Path) -> SessionMetadata:
        """Load session metadata from a saved session directory.

        Raises:
            FileNotFoundError: If ``metadata.json`` does not exist
                inside *session_dir*.
        """
        meta_path = session_dir / "metadata.json"
        if not meta_path.exists():
            raise FileNotFoundError(f"No metadata.json found in {session_dir}")

        with meta_path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        return SessionMetadata(**raw)

    @staticmethod
    def load_events(session_dir: Path) -> list[dict[str, Any]]:
        """Read ``events.jsonl`` back as a list of dictionaries."""
        events_path = session_dir / "events.jsonl"
        with events_path.open("r", encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]

    # -- Properties ----------------------------------------------------------

    @property
    def is_recording(self) -> bool:
        """Whether a session is currently being recorded."""
        return self._metadata is not None

    @property
    def session_path(self) -> Path | None:
        """Path to the current session directory, or None."""
        return self._session_dir
