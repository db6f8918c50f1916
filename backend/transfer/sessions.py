"""
Responder-side session store.

Allocates session ids and per-file tokens at handshake time and checks
them when the file bytes arrive. Every mutation happens under one lock so
concurrent handshakes and uploads cannot corrupt the tables.
"""

import asyncio
import hmac
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from security.crypto import generate_token
from transfer.errors import InvalidToken, SessionBlocked
from transfer.models import DeviceInfo, PrepareUploadRequest

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One accepted handshake and the files it authorizes."""
    session_id: str
    sender: DeviceInfo
    tokens: dict[str, str]
    created_at: float = field(default_factory=time.time)
    consumed: set[str] = field(default_factory=set)
    active: set[str] = field(default_factory=set)
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)


class SessionStore:
    """Sessions, tokens and the file id -> file name table."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = 0
        self._sessions: dict[str, Session] = {}
        self._file_names: dict[str, str] = {}
        self._destinations: set[Path] = set()

    def create_session(self, request: PrepareUploadRequest) -> Session:
        """Allocate the next session id and a fresh token for every file."""
        with self._lock:
            self._counter += 1
            session_id = f"session-{self._counter}"
            tokens = {file_id: generate_token() for file_id in request.files}
            session = Session(
                session_id=session_id,
                sender=request.info,
                tokens=tokens,
            )
            self._sessions[session_id] = session
            for file_id, meta in request.files.items():
                self._file_names[file_id] = meta.file_name

        logger.info(
            f"Created {session_id} for {request.info.alias} "
            f"with {len(tokens)} file(s)"
        )
        return session

    def lookup(self, file_id: str) -> str | None:
        """Return the file name announced for ``file_id``, if any."""
        with self._lock:
            return self._file_names.get(file_id)

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def begin_upload(
        self,
        session_id: str,
        file_id: str,
        token: str,
        dest: Path | None = None,
    ) -> Session:
        """
        Authorize an upload and mark it in flight.

        ``dest`` is claimed store-wide, so two sessions announcing the same
        file name cannot write into one file at the same time.

        Raises InvalidToken when the token was not issued for exactly this
        (session, file) pair or was already used, and SessionBlocked when
        the same file or destination is being received by another request.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.cancelled.is_set():
                raise InvalidToken("invalid token or session")
            expected = session.tokens.get(file_id)
            if expected is None or not hmac.compare_digest(expected, token):
                raise InvalidToken("invalid token or session")
            if file_id in session.consumed:
                raise InvalidToken("token already used")
            if file_id in session.active or (dest is not None and dest in self._destinations):
                raise SessionBlocked(f"{file_id} is already being received")
            session.active.add(file_id)
            if dest is not None:
                self._destinations.add(dest)
            return session

    def finish_upload(
        self,
        session_id: str,
        file_id: str,
        success: bool,
        dest: Path | None = None,
    ) -> None:
        """
        Release an in-flight upload; a successful one consumes its token.

        The session is dropped once every file it announced has arrived.
        """
        with self._lock:
            if dest is not None:
                self._destinations.discard(dest)
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.active.discard(file_id)
            if success:
                session.consumed.add(file_id)
            finished = session.consumed.issuperset(session.tokens)
            if finished:
                del self._sessions[session_id]
        if finished:
            logger.info(f"{session_id} complete")

    def close_session(self, session_id: str) -> bool:
        """Drop a session and signal its in-flight uploads to abort."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.cancelled.set()
        logger.info(f"Closed {session_id}")
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
