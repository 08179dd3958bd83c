"""
Session Cache Service - Redis-backed session state with TTL classes

Keys are namespaced per session so one session can be cleared in isolation:

    project_files:{session_id}        cached file set (FILE_SET TTL)
    mod_changes:{session_id}          modification change log (SESSION TTL)
    session:{session_id}:{key}        arbitrary session state
    ast_analysis:{content_hash}       content-addressed analysis results
    build:{build_id}                  build results

The cache is an accelerator, never a source of truth. Every Redis error is
logged and turned into a miss (reads) or False (writes), and a service built
without a connection behaves as if Redis were permanently down.
"""

import hashlib
import json
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Any, Dict, List, Callable, Awaitable

from redis.asyncio import Redis

from app.core.config import settings
from app.core.exceptions import CacheUnavailableError
from app.core.logging_config import logger


def _log_unavailable(operation: str, error: Exception) -> None:
    unavailable = CacheUnavailableError(operation, str(error))
    logger.warning(unavailable.message, extra={"error_code": unavailable.code})


class TTLClass(str, Enum):
    """Retention classes, shortest to longest"""
    DEFAULT = "default"
    SESSION = "session"
    FILE_SET = "file_set"


@dataclass
class SessionRecord:
    """Per-session state kept only in the cache; expires through TTL"""
    session_id: str
    build_id: str
    workspace_path: Optional[str] = None
    last_activity: float = field(default_factory=time.time)
    project_summary: Optional[Dict[str, Any]] = None  # {summary, archive_url, build_id}
    project_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class SessionCacheService:
    """
    Typed access to session-scoped cache entries.

    Writes always use SETEX so the TTL is refreshed on every write.
    """

    PREFIX_FILES = "project_files:"
    PREFIX_CHANGES = "mod_changes:"
    PREFIX_SESSION = "session:"
    PREFIX_AST = "ast_analysis:"
    PREFIX_BUILD = "build:"

    # Logical keys that live in their own top-level namespace
    NAMESPACED_KEYS = {
        "project_files": PREFIX_FILES,
        "mod_changes": PREFIX_CHANGES,
    }

    SESSION_RECORD_KEY = "context"

    def __init__(self, redis: Optional[Redis] = None):
        self._redis = redis

    # ========== Core contract ==========

    def ttl_for(self, ttl_class: TTLClass) -> int:
        if ttl_class == TTLClass.FILE_SET:
            return settings.CACHE_TTL_FILE_SET
        if ttl_class == TTLClass.SESSION:
            return settings.CACHE_TTL_SESSION
        return settings.CACHE_TTL_DEFAULT

    def key_for(self, scope: str, key: str) -> str:
        prefix = self.NAMESPACED_KEYS.get(key)
        if prefix:
            return f"{prefix}{scope}"
        return f"{self.PREFIX_SESSION}{scope}:{key}"

    @staticmethod
    def hash(content: str) -> str:
        """MD5 of the UTF-8 content; used for change detection, not security"""
        return hashlib.md5(content.encode("utf-8")).hexdigest()

    async def put(self, scope: str, key: str, value: Any,
                  ttl_class: TTLClass = TTLClass.DEFAULT) -> bool:
        return await self._set_raw(self.key_for(scope, key), value, self.ttl_for(ttl_class), "put")

    async def get(self, scope: str, key: str) -> Optional[Any]:
        return await self._get_raw(self.key_for(scope, key), "get")

    async def exists(self, scope: str, key: str) -> bool:
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.exists(self.key_for(scope, key)))
        except Exception as e:
            _log_unavailable("exists", e)
            return False

    async def delete(self, scope: str, key: str) -> bool:
        if self._redis is None:
            return False
        try:
            await self._redis.delete(self.key_for(scope, key))
            return True
        except Exception as e:
            _log_unavailable("delete", e)
            return False

    async def append_to_list(self, scope: str, key: str, item: Any,
                             ttl_class: TTLClass = TTLClass.SESSION) -> bool:
        """Read-append-rewrite; the rewrite refreshes the TTL"""
        if self._redis is None:
            return False
        current = await self.get(scope, key)
        items = current if isinstance(current, list) else []
        items.append(item)
        return await self.put(scope, key, items, ttl_class)

    async def clear_scope(self, scope: str) -> bool:
        """Remove every key that belongs to a session"""
        if self._redis is None:
            return False
        try:
            keys_to_delete = [
                f"{self.PREFIX_FILES}{scope}",
                f"{self.PREFIX_CHANGES}{scope}",
            ]
            cursor = 0
            pattern = f"{self.PREFIX_SESSION}{scope}:*"
            while True:
                cursor, keys = await self._redis.scan(cursor, match=pattern, count=100)
                keys_to_delete.extend(keys)
                if cursor == 0:
                    break

            await self._redis.delete(*keys_to_delete)
            logger.info(f"Cleared cache keys for session: {scope}")
            return True
        except Exception as e:
            _log_unavailable("clear_scope", e)
            return False

    async def claim(self, scope: str, key: str, token: str, ttl_seconds: int) -> bool:
        """
        Take an advisory claim with SET NX.

        Returns True when the claim is ours. With the cache down every caller
        is granted the claim, so callers must tolerate duplicates.
        """
        if self._redis is None:
            return True
        try:
            acquired = await self._redis.set(self.key_for(scope, key), token, nx=True, ex=ttl_seconds)
            return bool(acquired)
        except Exception as e:
            _log_unavailable("claim", e)
            return True

    async def release_claim(self, scope: str, key: str, token: str) -> bool:
        if self._redis is None:
            return False
        try:
            full_key = self.key_for(scope, key)
            holder = await self._redis.get(full_key)
            if holder == token:
                await self._redis.delete(full_key)
                return True
            return False
        except Exception as e:
            _log_unavailable("release_claim", e)
            return False

    # ========== Project files ==========

    async def set_project_files(self, session_id: str, files: Dict[str, str]) -> bool:
        """Cache a file set as {path: {content, hash}}"""
        entries = {
            path: {"content": content, "hash": self.hash(content)}
            for path, content in files.items()
        }
        ok = await self.put(session_id, "project_files", entries, TTLClass.FILE_SET)
        if ok:
            logger.debug(f"Cached {len(entries)} files for session: {session_id}")
        return ok

    async def get_project_files(self, session_id: str) -> Optional[Dict[str, Dict[str, str]]]:
        files = await self.get(session_id, "project_files")
        logger.log_cache_event("get_project_files", session_id, hit=files is not None)
        return files

    async def update_project_file(self, session_id: str, path: str, content: str) -> bool:
        files = await self.get_project_files(session_id) or {}
        files[path] = {"content": content, "hash": self.hash(content)}
        return await self.put(session_id, "project_files", files, TTLClass.FILE_SET)

    async def has_project_files(self, session_id: str) -> bool:
        return await self.exists(session_id, "project_files")

    # ========== Modification change log ==========

    async def add_modification_change(self, session_id: str, change: Dict[str, Any]) -> bool:
        entry = dict(change)
        entry.setdefault("timestamp", time.time())
        return await self.append_to_list(session_id, "mod_changes", entry, TTLClass.SESSION)

    async def get_modification_changes(self, session_id: str) -> List[Dict[str, Any]]:
        changes = await self.get(session_id, "mod_changes")
        return changes if isinstance(changes, list) else []

    # ========== Session state ==========

    async def set_session_state(self, session_id: str, key: str, value: Any,
                                ttl_class: TTLClass = TTLClass.SESSION) -> bool:
        return await self.put(session_id, key, value, ttl_class)

    async def get_session_state(self, session_id: str, key: str) -> Optional[Any]:
        return await self.get(session_id, key)

    async def delete_session_state(self, session_id: str, key: str) -> bool:
        return await self.delete(session_id, key)

    async def save_session_record(self, record: SessionRecord) -> bool:
        record.last_activity = time.time()
        return await self.put(record.session_id, self.SESSION_RECORD_KEY, record.to_dict(), TTLClass.SESSION)

    async def get_session_record(self, session_id: str) -> Optional[SessionRecord]:
        data = await self.get(session_id, self.SESSION_RECORD_KEY)
        if not isinstance(data, dict):
            return None
        try:
            return SessionRecord.from_dict(data)
        except TypeError as e:
            logger.warning(f"Discarding malformed session record for {session_id}: {e}")
            return None

    async def update_session_record(self, session_id: str, **updates) -> Optional[SessionRecord]:
        """Merge updates into the stored record, creating it when absent"""
        record = await self.get_session_record(session_id)
        if record is None:
            record = SessionRecord(session_id=session_id, build_id=updates.get("build_id") or "")
        for name, value in updates.items():
            if name in SessionRecord.__dataclass_fields__:
                setattr(record, name, value)
        await self.save_session_record(record)
        return record

    # ========== AST analysis (content addressed) ==========

    async def set_ast_analysis(self, content_hash: str, analysis: Any) -> bool:
        return await self._set_raw(
            f"{self.PREFIX_AST}{content_hash}", analysis,
            self.ttl_for(TTLClass.FILE_SET), "set_ast_analysis"
        )

    async def get_ast_analysis(self, content_hash: str) -> Optional[Any]:
        return await self._get_raw(f"{self.PREFIX_AST}{content_hash}", "get_ast_analysis")

    async def get_or_compute_ast_analysis(
        self,
        path: str,
        content: str,
        compute: Callable[[str, str], Awaitable[Any]],
    ) -> Any:
        """Reuse an analysis for identical content regardless of path or session"""
        content_hash = self.hash(content)
        cached = await self.get_ast_analysis(content_hash)
        logger.log_cache_event("ast_analysis", content_hash, hit=cached is not None, path=path)
        if cached is not None:
            return cached

        analysis = await compute(path, content)
        await self.set_ast_analysis(content_hash, analysis)
        return analysis

    # ========== Build results ==========

    async def set_build_cache(self, build_id: str, result: Dict[str, Any]) -> bool:
        return await self._set_raw(
            f"{self.PREFIX_BUILD}{build_id}", result,
            self.ttl_for(TTLClass.DEFAULT), "set_build_cache"
        )

    async def get_build_cache(self, build_id: str) -> Optional[Dict[str, Any]]:
        return await self._get_raw(f"{self.PREFIX_BUILD}{build_id}", "get_build_cache")

    # ========== Health ==========

    async def is_connected(self) -> bool:
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.ping())
        except Exception as e:
            _log_unavailable("ping", e)
            return False

    async def get_stats(self) -> dict:
        """Get cache statistics"""
        if self._redis is None:
            return {"connected": False}
        try:
            info = await self._redis.info('memory')
            return {
                'connected': True,
                'used_memory': info.get('used_memory_human', 'N/A'),
                'total_keys': await self._redis.dbsize()
            }
        except Exception as e:
            _log_unavailable("get_stats", e)
            return {"connected": False}

    # ========== Internals ==========

    async def _set_raw(self, full_key: str, value: Any, ttl: int, operation: str) -> bool:
        if self._redis is None:
            return False
        try:
            await self._redis.setex(full_key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            _log_unavailable(operation, e)
            return False

    async def _get_raw(self, full_key: str, operation: str) -> Optional[Any]:
        if self._redis is None:
            return None
        try:
            data = await self._redis.get(full_key)
            if data is None:
                return None
            return json.loads(data)
        except Exception as e:
            _log_unavailable(operation, e)
            return None
