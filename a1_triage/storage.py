"""
In-memory session store

Keeps sessions, their append-only stage records and exploit discoveries for
the lifetime of the process. Every status a session passes through is kept
in its status history.
"""

import asyncio
import dataclasses
import logging
from typing import Dict, List, Optional

from .interfaces import SessionStore
from .models import ExploitDiscovery, Session, SessionStatus, StageExecutionRecord, utcnow


class InMemorySessionStore(SessionStore):
    """asyncio-safe registry of sessions, stage records and discoveries"""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._lock = asyncio.Lock()
        self._sessions: Dict[str, Session] = {}
        self._status_history: Dict[str, List[SessionStatus]] = {}
        self._stage_records: Dict[str, List[StageExecutionRecord]] = {}
        self._discoveries: List[ExploitDiscovery] = []

    async def create_session(self, session: Session) -> Session:
        async with self._lock:
            if session.id in self._sessions:
                raise KeyError(f"Session {session.id} already exists")
            self._sessions[session.id] = dataclasses.replace(session)
            self._status_history[session.id] = [session.status]
            self._stage_records[session.id] = []
        self.logger.debug(f"Created session {session.id} for {session.contract_address}")
        return dataclasses.replace(session)

    async def get_session(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(session_id)
            return dataclasses.replace(session) if session else None

    async def update_session(self, session: Session) -> Session:
        async with self._lock:
            current = self._sessions.get(session.id)
            if current is None:
                raise KeyError(f"Unknown session {session.id}")
            updated = dataclasses.replace(session, updated_at=utcnow())
            self._sessions[session.id] = updated
            if current.status != updated.status:
                self._status_history[session.id].append(updated.status)
        return dataclasses.replace(updated)

    async def append_stage_record(self, record: StageExecutionRecord) -> None:
        async with self._lock:
            if record.session_id not in self._stage_records:
                raise KeyError(f"Unknown session {record.session_id}")
            self._stage_records[record.session_id].append(record)

    async def get_stage_records(self, session_id: str) -> List[StageExecutionRecord]:
        async with self._lock:
            return list(self._stage_records.get(session_id, []))

    async def create_exploit_discovery(self, discovery: ExploitDiscovery) -> ExploitDiscovery:
        async with self._lock:
            self._discoveries.append(discovery)
        return discovery

    async def get_exploit_discoveries(self, session_id: Optional[str] = None) -> List[ExploitDiscovery]:
        async with self._lock:
            if session_id is None:
                return list(self._discoveries)
            return [d for d in self._discoveries if d.session_id == session_id]

    async def get_status_history(self, session_id: str) -> List[SessionStatus]:
        async with self._lock:
            return list(self._status_history.get(session_id, []))

    async def list_sessions(self) -> List[Session]:
        async with self._lock:
            return [dataclasses.replace(s) for s in self._sessions.values()]
