"""reqstash store - the JSON document file and every mutation on it.

One ``DocumentStore`` owns one file. There is no cache: each operation
reloads the file, applies the load-time migrations, and (for mutations)
writes it back while holding the store's write lock.
"""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import secrets
import shutil
import threading
import time
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pydantic

from reqstash.core import resolve_variable_value
from reqstash.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from reqstash.models import (
    BodyField,
    Document,
    Environment,
    Group,
    JsonBody,
    ProxyResponse,
    QueryParam,
    SavedRequest,
    TextBody,
    Variable,
    now_timestamp,
    parse_body,
)

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "default"
DEFAULT_ENVIRONMENT = "Default"

SAVE_RETRIES = 5
SAVE_BACKOFF = 0.05  # seconds, times the attempt number
REMOVE_SETTLE = 0.01

# What _read() found: nothing to write back, a new or migrated document to
# persist, or an unparseable file replaced by a fresh document.
_CLEAN = "clean"
_CHANGED = "changed"
_CORRUPT = "corrupt"


def generate_id() -> str:
    """16 hex characters from 8 random bytes."""
    return secrets.token_hex(8)


def unique_name(base: str, existing: Iterable[str]) -> str:
    """Return base, or base (2), base (3), ... whichever is free (case-sensitive)."""
    taken = set(existing)
    candidate = base
    counter = 1
    while candidate in taken:
        counter += 1
        candidate = f"{base} ({counter})"
    return candidate


class RWLock:
    """Many readers or one writer. A waiting writer holds off new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class ResolvedVariable:
    key: str
    value: str
    resolved_value: str
    is_env_var: bool


# ── Document construction and migrations ─────────────────────────────────


def _new_environment(name: str, variables: list[Variable] | None = None) -> Environment:
    now = now_timestamp()
    return Environment(
        id=generate_id(),
        name=name,
        variables=list(variables or []),
        created_at=now,
        updated_at=now,
    )


def _new_group(name: str) -> Group:
    now = now_timestamp()
    return Group(id=generate_id(), name=name, created_at=now, updated_at=now)


def new_document() -> Document:
    """Fresh document: one Default environment (current) and the default group."""
    env = _new_environment(DEFAULT_ENVIRONMENT)
    return Document(
        environments=[env],
        current_environment=env.id,
        groups=[_new_group(DEFAULT_GROUP)],
    )


def ensure_default_group(doc: Document) -> bool:
    if any(g.name == DEFAULT_GROUP for g in doc.groups):
        return False
    doc.groups.append(_new_group(DEFAULT_GROUP))
    return True


def migrate_environments(doc: Document) -> bool:
    changed = False
    if doc.variables and not doc.environments:
        doc.environments = [_new_environment(DEFAULT_ENVIRONMENT, copy.deepcopy(doc.variables))]
        doc.current_environment = doc.environments[0].id
        logger.info("Migrated %d variables to Default environment", len(doc.variables))
        changed = True

    if not doc.environments:
        doc.environments = [_new_environment(DEFAULT_ENVIRONMENT)]
        doc.current_environment = doc.environments[0].id
        changed = True

    if doc.active_environment() is None:
        doc.current_environment = doc.environments[0].id
        changed = True
    return changed


def migrate_requests_to_default_group(doc: Document) -> bool:
    migrated = 0
    for req in doc.requests:
        if not req.group:
            req.group = DEFAULT_GROUP
            migrated += 1
    if migrated:
        logger.info("Migrated %d requests to default group", migrated)
    return bool(migrated)


def _migrated_body(body):
    """JSON-holding text becomes JsonBody; anything else is returned unchanged."""
    if isinstance(body, TextBody) and body.text.strip():
        parsed = parse_body(body.text)
        if isinstance(parsed, JsonBody):
            return parsed
    return body


def migrate_string_bodies(doc: Document) -> bool:
    request_bodies = response_bodies = 0
    for req in doc.requests:
        body = _migrated_body(req.body)
        if body is not req.body:
            req.body = body
            request_bodies += 1
        if req.last_response is not None:
            body = _migrated_body(req.last_response.body)
            if body is not req.last_response.body:
                req.last_response.body = body
                response_bodies += 1
    if request_bodies or response_bodies:
        logger.info(
            "Migrated %d request bodies and %d response bodies from strings to JSON",
            request_bodies,
            response_bodies,
        )
    return bool(request_bodies or response_bodies)


def deduplicate_request_names(doc: Document) -> bool:
    """Suffix repeated names with (2), (3), ... Returns True if anything changed."""
    seen: set[str] = set()
    changed = False
    for req in doc.requests:
        candidate = unique_name(req.name, seen)
        if candidate != req.name:
            logger.info("Renamed duplicate request %r to %r", req.name, candidate)
            req.name = candidate
            changed = True
        seen.add(candidate)
    return changed


def migrate(doc: Document) -> bool:
    """Apply every load-time migration in order. Returns True if any changed doc.

    Every migration is applied even after one reports a change.
    """
    results = [
        migrate_environments(doc),
        ensure_default_group(doc),
        migrate_requests_to_default_group(doc),
        migrate_string_bodies(doc),
        deduplicate_request_names(doc),
    ]
    return any(results)


def _rows(items: Iterable[Any] | None, cls):
    return [i if isinstance(i, cls) else cls.model_validate(i) for i in items or []]


def _require(value: str, message: str) -> None:
    if not value:
        raise ValidationError(message)


def _encode(doc: Document) -> bytes:
    """Serialize the whole document before the file is opened for writing."""
    try:
        data = doc.to_dict()
        text = json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"failed to encode document: {e}") from e
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates have no UTF-8 form; \u escapes keep them.
        return json.dumps(data, indent=2).encode("ascii")


# ── Store ────────────────────────────────────────────────────────────────


class DocumentStore:
    """Load/save and mutate the document behind one read/write lock."""

    def __init__(
        self,
        path: str | Path,
        retries: int = SAVE_RETRIES,
        backoff: float = SAVE_BACKOFF,
    ):
        self.path = Path(path)
        self.retries = retries
        self.backoff = backoff
        self._lock = RWLock()

    # ── load / save ──────────────────────────────────────────────────

    def load(self) -> Document:
        """Read the document, writing it back when it had to be created or migrated.

        Ids minted for a fresh Default environment or default group only stay
        valid if they reach the file, so a first load persists them. The
        write-back re-reads under the write lock instead of upgrading the read
        lock, so no writer can slip in between the check and the save.
        """
        with self._lock.read():
            doc, state = self._read()
        if state == _CLEAN:
            return doc

        with self._lock.write():
            doc, state = self._read_for_write()
            if state != _CLEAN:
                logger.info("Saving initialized or migrated document to %s", self.path)
                try:
                    self._write(doc)
                except PersistenceError as e:
                    logger.warning("Failed to save migrated document: %s", e)
        return doc

    def save(self, doc: Document) -> None:
        with self._lock.write():
            self._write(doc)

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Document]:
        """Load, let the caller mutate, save; all under the write lock.

        Nothing is written if the block raises.
        """
        with self._lock.write():
            doc, _ = self._read_for_write()
            yield doc
            self._write(doc)

    def _read(self) -> tuple[Document, str]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return new_document(), _CHANGED
        except OSError as e:
            raise PersistenceError(f"failed to read {self.path}: {e}") from e

        if not raw:
            return new_document(), _CHANGED

        try:
            doc = Document.model_validate(json.loads(raw))
        except (ValueError, pydantic.ValidationError) as e:
            logger.warning("JSON parse error in %s: %s", self.path, e)
            logger.warning("Recovering with a fresh document")
            return new_document(), _CORRUPT

        return doc, _CHANGED if migrate(doc) else _CLEAN

    def _read_for_write(self) -> tuple[Document, str]:
        """_read() for callers about to save: copies a corrupt file aside first."""
        doc, state = self._read()
        if state == _CORRUPT:
            backup = self.path.with_name(self.path.name + ".corrupt")
            try:
                shutil.copyfile(self.path, backup)
            except OSError as e:
                logger.warning("Could not keep corrupt file as %s: %s", backup, e)
            else:
                logger.warning("Previous contents kept in %s", backup)
        return doc, state

    def _write(self, doc: Document) -> None:
        payload = _encode(doc)
        try:
            self._direct_write(payload)
        except OSError as e:
            logger.warning("Direct write to %s failed (%s), falling back to rename", self.path, e)
        else:
            logger.info("Saved %d requests to %s", len(doc.requests), self.path)
            return
        self._replace_write(payload, len(doc.requests))

    def _direct_write(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())

    def _replace_write(self, payload: bytes, request_count: int) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_bytes(payload)
        except OSError as e:
            raise PersistenceError(f"failed to write temporary file: {e}") from e

        for attempt in range(1, self.retries + 1):
            # Some platforms refuse to rename over a file another process holds.
            if self.path.exists():
                with contextlib.suppress(OSError):
                    os.remove(self.path)
                time.sleep(REMOVE_SETTLE)
            try:
                os.replace(tmp, self.path)
            except OSError as e:
                logger.warning("Rename attempt %d failed: %s", attempt, e)
                if attempt < self.retries:
                    time.sleep(attempt * self.backoff)
            else:
                logger.info(
                    "Saved %d requests to %s (attempt %d)", request_count, self.path, attempt
                )
                return

        with contextlib.suppress(OSError):
            os.remove(tmp)
        raise PersistenceError(
            f"failed to save after {self.retries} attempts - "
            "file may be locked by another process"
        )

    # ── requests ─────────────────────────────────────────────────────

    def list_requests(self) -> list[SavedRequest]:
        return self.load().requests

    def get_request(self, request_id: str) -> SavedRequest:
        req = self.load().request_by_id(request_id)
        if req is None:
            raise NotFoundError(f"Request not found: {request_id}")
        return req

    def find_request(self, name: str) -> SavedRequest | None:
        return self.load().find_request(name)

    def create_request(
        self,
        name: str,
        url: str,
        method: str = "",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        body_type: str = "",
        body_text: str = "",
        body_json: Iterable[Any] | None = None,
        body_form: Iterable[Any] | None = None,
        params: Iterable[Any] | None = None,
        group: str = "",
        description: str = "",
        last_response: ProxyResponse | dict | None = None,
    ) -> SavedRequest:
        _require(name, "Request name is required")
        _require(url, "URL is required")

        with self.transaction() as doc:
            if doc.find_request(name) is not None:
                raise ConflictError(f"A request named '{name}' already exists")
            now = now_timestamp()
            req = SavedRequest(
                id=generate_id(),
                name=name,
                url=url,
                method=method or "GET",
                headers=dict(headers or {}),
                body=parse_body(body),
                body_type=body_type,
                body_text=body_text,
                body_json=_rows(body_json, BodyField),
                body_form=_rows(body_form, BodyField),
                params=_rows(params, QueryParam),
                group=group or DEFAULT_GROUP,
                description=description,
                last_response=_response(last_response),
                created_at=now,
                updated_at=now,
            )
            doc.requests.append(req)

        logger.info("Saved request: %s (%s %s)", req.name, req.method, req.url)
        return req

    def update_request(
        self,
        request_id: str,
        name: str,
        url: str,
        method: str = "",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        body_type: str = "",
        body_text: str = "",
        body_json: Iterable[Any] | None = None,
        body_form: Iterable[Any] | None = None,
        params: Iterable[Any] | None = None,
        group: str = "",
        description: str = "",
        last_response: ProxyResponse | dict | None = None,
    ) -> SavedRequest:
        """Replace every field of a request; lastResponse only when given."""
        _require(request_id, "Request ID is required")
        _require(name, "Request name is required")
        _require(url, "URL is required")

        with self.transaction() as doc:
            for existing in doc.requests:
                if existing.id != request_id and existing.name == name:
                    raise ConflictError(f"A request named '{name}' already exists")
            req = doc.request_by_id(request_id)
            if req is None:
                raise NotFoundError(f"Request not found: {request_id}")

            req.name = name
            req.url = url
            req.method = method or "GET"
            req.headers = dict(headers or {})
            req.body = parse_body(body)
            req.body_type = body_type
            req.body_text = body_text
            req.body_json = _rows(body_json, BodyField)
            req.body_form = _rows(body_form, BodyField)
            req.params = _rows(params, QueryParam)
            req.group = group or DEFAULT_GROUP
            req.description = description
            if last_response is not None:
                req.last_response = _response(last_response)
            req.updated_at = now_timestamp()

        logger.info("Updated request: %s (%s %s)", req.name, req.method, req.url)
        return req

    def delete_request(self, request_id: str) -> SavedRequest:
        _require(request_id, "Request ID is required")
        with self.transaction() as doc:
            req = doc.request_by_id(request_id)
            if req is None:
                raise NotFoundError(f"Request not found: {request_id}")
            doc.requests.remove(req)
        logger.info("Deleted request: %s (%s)", req.name, req.id)
        return req

    def duplicate_request(self, request_id: str) -> SavedRequest:
        """Copy a request under a fresh id and "<name> (Copy)" name, without its response."""
        _require(request_id, "Request ID is required")
        with self.transaction() as doc:
            original = doc.request_by_id(request_id)
            if original is None:
                raise NotFoundError(f"Request not found: {request_id}")
            now = now_timestamp()
            dup = copy.deepcopy(original)
            dup.id = generate_id()
            dup.name = unique_name(f"{original.name} (Copy)", (r.name for r in doc.requests))
            dup.last_response = None
            dup.created_at = now
            dup.updated_at = now
            doc.requests.append(dup)
        logger.info("Duplicated request: %s -> %s", original.name, dup.name)
        return dup

    def record_response(self, request_id: str, response: ProxyResponse) -> SavedRequest:
        """Store an executor result as the request's lastResponse."""
        with self.transaction() as doc:
            req = doc.request_by_id(request_id)
            if req is None:
                raise NotFoundError(f"Request not found: {request_id}")
            req.last_response = response
        logger.info("Recorded %d response for %s", response.status_code, req.name)
        return req

    # ── environments and variables ───────────────────────────────────

    def list_environments(self) -> tuple[list[Environment], str]:
        doc = self.load()
        return doc.environments, doc.current_environment

    def current_environment(self) -> Environment:
        env = self.load().active_environment()
        if env is None:
            # load() repairs currentEnvironment, so this means a broken invariant.
            raise NotFoundError("Current environment not found")
        return env

    def create_environment(self, name: str) -> Environment:
        _require(name, "Environment name is required")
        with self.transaction() as doc:
            if any(e.name == name for e in doc.environments):
                raise ConflictError(f"Environment '{name}' already exists")
            env = _new_environment(name)
            doc.environments.append(env)
        logger.info("Created environment: %s (%s)", env.name, env.id)
        return env

    def update_environment(
        self,
        env_id: str,
        name: str | None = None,
        variables: Iterable[Any] | None = None,
    ) -> Environment:
        _require(env_id, "Environment ID is required")
        with self.transaction() as doc:
            env = doc.environment_by_id(env_id)
            if env is None:
                raise NotFoundError(f"Environment not found: {env_id}")
            if name:
                if any(e.name == name and e.id != env_id for e in doc.environments):
                    raise ConflictError(f"Environment '{name}' already exists")
                env.name = name
            if variables is not None:
                env.variables = _rows(variables, Variable)
            env.updated_at = now_timestamp()
        logger.info("Updated environment: %s", env_id)
        return env

    def delete_environment(self, env_id: str) -> Environment:
        _require(env_id, "Environment ID is required")
        with self.transaction() as doc:
            if len(doc.environments) <= 1:
                raise ConflictError("Cannot delete the last environment")
            env = doc.environment_by_id(env_id)
            if env is None:
                raise NotFoundError(f"Environment not found: {env_id}")
            doc.environments.remove(env)
            if doc.current_environment == env_id:
                doc.current_environment = doc.environments[0].id
        logger.info("Deleted environment: %s", env_id)
        return env

    def activate_environment(self, env_id: str) -> Environment:
        _require(env_id, "Environment ID is required")
        with self.transaction() as doc:
            env = doc.environment_by_id(env_id)
            if env is None:
                raise NotFoundError(f"Environment not found: {env_id}")
            doc.current_environment = env_id
        logger.info("Activated environment: %s", env_id)
        return env

    def copy_environment(self, target_id: str, source_id: str) -> Environment:
        """Replace the target's variables with a copy of the source's."""
        _require(target_id, "Environment ID is required")
        _require(source_id, "Source environment ID is required")
        with self.transaction() as doc:
            source = doc.environment_by_id(source_id)
            if source is None:
                raise NotFoundError(f"Source environment not found: {source_id}")
            target = doc.environment_by_id(target_id)
            if target is None:
                raise NotFoundError(f"Target environment not found: {target_id}")
            target.variables = copy.deepcopy(source.variables)
            target.updated_at = now_timestamp()
        logger.info(
            "Copied %d variables from %s to %s", len(source.variables), source_id, target_id
        )
        return target

    def save_variables(self, variables: Iterable[Any]) -> Environment:
        """Replace the current environment's variables."""
        with self.transaction() as doc:
            env = doc.active_environment()
            if env is None:
                raise NotFoundError(f"Current environment not found: {doc.current_environment}")
            env.variables = _rows(variables, Variable)
            env.updated_at = now_timestamp()
        logger.info("Saved %d variables to environment %s", len(env.variables), env.id)
        return env

    def list_variables(self, env: Mapping[str, str] | None = None) -> list[ResolvedVariable]:
        """Current environment's variables with their effective values."""
        result = []
        for variable in self.current_environment().variables:
            is_env_var = variable.value.startswith("$")
            resolved = resolve_variable_value(variable.value, env) if is_env_var else variable.value
            result.append(ResolvedVariable(variable.key, variable.value, resolved, is_env_var))
        return result

    # ── groups ───────────────────────────────────────────────────────

    def list_groups(self) -> list[Group]:
        return self.load().groups

    def create_group(self, name: str) -> Group:
        _require(name, "Group name is required")
        with self.transaction() as doc:
            if any(g.name == name for g in doc.groups):
                raise ConflictError("Group already exists")
            group = _new_group(name)
            doc.groups.append(group)
        logger.info("Created group: %s", group.name)
        return group

    def delete_group(self, group_id: str) -> Group:
        _require(group_id, "Group ID is required")
        with self.transaction() as doc:
            group = doc.group_by_id(group_id)
            if group is None:
                raise NotFoundError("Group not found")
            if group.name == DEFAULT_GROUP:
                raise ConflictError("Cannot delete default group")
            if any(r.group == group.name for r in doc.requests):
                raise ConflictError("Cannot delete group with requests")
            doc.groups.remove(group)
        logger.info("Deleted group: %s", group.name)
        return group

    # ── settings ─────────────────────────────────────────────────────

    def set_word_wrap(self, enabled: bool) -> None:
        with self.transaction() as doc:
            doc.word_wrap = enabled
        logger.info("Updated word wrap setting to: %s", enabled)


def _response(value: ProxyResponse | dict | None) -> ProxyResponse | None:
    if value is None or isinstance(value, ProxyResponse):
        return value
    response = ProxyResponse.model_validate(value)
    response.body = parse_body(value.get("body"))
    return response
