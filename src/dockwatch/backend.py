"""
Runtime gateway: the only place dockwatch talks to the docker daemon.

This module defines the RuntimeGateway capability surface the rest of the
application depends on, and DockerBackend, its implementation on top of the
docker-py library:
  - list_containers(): one sparse list call per poll
  - stats(id): one-shot stats payload reduced to a MetricsSample
  - stream_logs(id, since): followed stdout/stderr merged into one LogStream
  - lifecycle(id, action): start/stop/restart/pause/unpause/remove
  - exec(id): interactive `docker exec -it` in the current terminal

Error Handling:
  - Every daemon call goes through @gateway_call, which logs and converts
    docker-py/requests exceptions into dockwatch.errors types
  - Daemon rejections of lifecycle commands -> ActionFailed
  - Anything else (socket errors, timeouts, bad payloads) -> TransientGatewayError
  - ping() failing at startup -> FatalInitError

Dependencies:
  - docker>=7.0.0 (docker-py client)
  - subprocess (for the interactive exec shell)
"""

import abc
import functools
import logging
import queue
import subprocess
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import docker
from docker.errors import APIError

from .errors import ActionFailed, FatalInitError, GatewayError, TransientGatewayError
from .model import Action, Container, ContainerStatus, LogLine, MetricsSample
from .stats import calculate_cpu_percent, calculate_memory_usage, network_totals

logger = logging.getLogger(__name__)


def gateway_call(api_error: type = TransientGatewayError) -> Callable:
    """
    Decorator for daemon calls that translates failures into GatewayError.

    Args:
        api_error: GatewayError subclass raised when the daemon answers with
            an API error (e.g. ActionFailed for lifecycle commands)

    Usage:
        @gateway_call(api_error=ActionFailed)
        def lifecycle(self, container_id, action):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except GatewayError:
                raise
            except APIError as e:
                reason = e.explanation or str(e)
                logger.warning(f"Docker API error in {func.__name__}: {reason}")
                raise api_error(reason) from e
            except Exception as e:
                logger.warning(f"Docker operation failed in {func.__name__}: {e}")
                raise TransientGatewayError(str(e)) from e
        return wrapper
    return decorator


class LogStream(abc.ABC):
    """Infinite iterator of LogLine that another thread may close()."""

    def __iter__(self) -> Iterator[LogLine]:
        return self

    @abc.abstractmethod
    def __next__(self) -> LogLine:
        ...

    @abc.abstractmethod
    def close(self) -> None:
        ...


class RuntimeGateway(abc.ABC):
    """Capability surface the core needs from a container daemon."""

    @abc.abstractmethod
    def ping(self) -> None:
        """Raise FatalInitError when the daemon cannot be reached."""

    @abc.abstractmethod
    def list_containers(self) -> List[Container]:
        ...

    @abc.abstractmethod
    def stats(self, container_id: str) -> MetricsSample:
        ...

    @abc.abstractmethod
    def stream_logs(self, container_id: str, since: Optional[float] = None) -> LogStream:
        ...

    @abc.abstractmethod
    def lifecycle(self, container_id: str, action: Action) -> None:
        ...

    @abc.abstractmethod
    def exec(self, container_id: str) -> int:
        """Run an interactive shell; returns its exit code."""


def parse_log_line(raw: str, stream: str) -> LogLine:
    """Split a `timestamps=True` log line into its RFC3339 stamp and text."""
    stamp, sep, text = raw.partition(" ")
    if sep:
        try:
            return LogLine(timestamp=_parse_rfc3339(stamp), text=text, stream=stream)
        except ValueError:
            pass
    return LogLine(timestamp=time.time(), text=raw, stream=stream)


def _parse_rfc3339(stamp: str) -> float:
    # Docker emits nanoseconds; fromisoformat handles at most microseconds
    if stamp.endswith("Z"):
        stamp = stamp[:-1] + "+00:00"
    if "." in stamp:
        head, _, rest = stamp.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        stamp = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    return datetime.fromisoformat(stamp).timestamp()


class DockerLogStream(LogStream):
    """Merges followed stdout and stderr docker streams into one LogStream.

    One pump thread per source reads raw chunks into a queue; __next__ splits
    them into lines. close() closes the sockets, which unblocks the pumps.
    """

    _END = object()

    def __init__(self, sources: Dict[str, Any]):
        self._sources = sources
        self._queue: "queue.Queue[Tuple[str, Any]]" = queue.Queue()
        self._partial: Dict[str, str] = {name: "" for name in sources}
        self._ready: List[LogLine] = []
        self._alive = len(sources)
        self._closed = threading.Event()
        for name, source in sources.items():
            threading.Thread(target=self._pump, args=(name, source), daemon=True,
                             name=f"log-pump-{name}").start()

    def _pump(self, name: str, source: Any) -> None:
        try:
            for chunk in source:
                if self._closed.is_set():
                    break
                self._queue.put((name, chunk))
        except Exception as e:
            if not self._closed.is_set():
                logger.debug(f"Log stream {name} ended with error: {e}")
        finally:
            self._queue.put((name, self._END))

    def __next__(self) -> LogLine:
        while not self._ready:
            if self._closed.is_set() or self._alive == 0:
                raise StopIteration
            name, chunk = self._queue.get()
            if chunk is self._END:
                self._alive -= 1
                leftover = self._partial.pop(name, "")
                if leftover:
                    self._ready.append(parse_log_line(leftover, name))
                continue
            if isinstance(chunk, bytes):
                chunk = chunk.decode('utf-8', errors='replace')
            lines = (self._partial[name] + chunk).split("\n")
            self._partial[name] = lines.pop()
            for raw in lines:
                self._ready.append(parse_log_line(raw.rstrip("\r"), name))
        return self._ready.pop(0)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        for name, source in self._sources.items():
            try:
                source.close()
            except Exception as e:
                logger.debug(f"Closing log stream {name} failed: {e}")
        self._queue.put(("", self._END))


class DockerBackend(RuntimeGateway):
    def __init__(self, client: Optional[Any] = None, default_shell: str = "/bin/bash",
                 fallback_shell: str = "/bin/sh", docker_bin: str = "docker"):
        self.client = client
        self.default_shell = default_shell
        self.fallback_shell = fallback_shell
        self.docker_bin = docker_bin

    def _get_client(self) -> Any:
        if self.client is None:
            self.client = docker.from_env()
        return self.client

    def ping(self) -> None:
        try:
            self._get_client().ping()
        except Exception as e:
            logger.critical(f"Unable to access docker daemon: {e}")
            raise FatalInitError(f"Unable to access docker daemon: {e}") from e

    @gateway_call()
    def list_containers(self) -> List[Container]:
        raw = self._get_client().containers.list(all=True, sparse=True)
        return [self._to_container(c.attrs) for c in raw]

    @staticmethod
    def _to_container(attrs: Dict[str, Any]) -> Container:
        names = attrs.get('Names') or []
        name = names[0] if names else (attrs.get('Name') or attrs.get('Id', '')[:12])
        state = attrs.get('State')
        if isinstance(state, dict):
            state = state.get('Status')
        created = attrs.get('Created', 0)
        if isinstance(created, str):
            try:
                created = _parse_rfc3339(created)
            except ValueError:
                created = 0
        labels = attrs.get('Labels') or {}
        image = attrs.get('Image') or ""
        if isinstance(attrs.get('Config'), dict):
            image = attrs['Config'].get('Image') or image
        return Container(
            id=attrs['Id'],
            name=name.lstrip('/'),
            image=image,
            status=ContainerStatus.parse(state),
            created=float(created or 0),
            project=labels.get('com.docker.compose.project', 'standalone'),
        )

    @gateway_call()
    def stats(self, container_id: str) -> MetricsSample:
        raw = self._get_client().api.stats(container_id, stream=False)
        used, limit = calculate_memory_usage(raw)
        rx, tx = network_totals(raw)
        return MetricsSample(
            timestamp=time.time(),
            cpu_percent=calculate_cpu_percent(raw),
            memory_bytes=used,
            memory_limit_bytes=limit,
            rx_bytes=rx,
            tx_bytes=tx,
        )

    @gateway_call()
    def stream_logs(self, container_id: str, since: Optional[float] = None) -> LogStream:
        api = self._get_client().api
        since = since if since is not None else time.time()
        sources = {}
        try:
            for name in ("stdout", "stderr"):
                sources[name] = api.logs(
                    container_id,
                    stdout=(name == "stdout"),
                    stderr=(name == "stderr"),
                    stream=True,
                    follow=True,
                    timestamps=True,
                    since=since,
                )
        except Exception:
            for source in sources.values():
                source.close()
            raise
        return DockerLogStream(sources)

    @gateway_call(api_error=ActionFailed)
    def lifecycle(self, container_id: str, action: Action) -> None:
        container = self._get_client().containers.get(container_id)
        if action is Action.START:
            container.start()
        elif action is Action.STOP:
            container.stop()
        elif action is Action.RESTART:
            container.restart()
        elif action is Action.PAUSE:
            container.pause()
        elif action is Action.UNPAUSE:
            container.unpause()
        elif action is Action.DELETE:
            container.remove(force=True)
        else:
            raise ActionFailed(f"{action.value} is not a lifecycle command")
        logger.info(f"{action.value} sent to {container_id[:12]}")

    def exec(self, container_id: str) -> int:
        """Run `docker exec -it` attached to the real terminal."""
        cmd = [self.docker_bin, "exec", "-it", container_id, self.default_shell]
        try:
            code = subprocess.call(cmd)
            # 126/127: shell missing or not executable in the image
            if code in (126, 127) and self.fallback_shell:
                logger.info(f"{self.default_shell} unavailable in {container_id[:12]}, trying {self.fallback_shell}")
                code = subprocess.call(cmd[:-1] + [self.fallback_shell])
        except OSError as e:
            logger.error(f"Exec into {container_id[:12]} failed: {e}")
            raise ActionFailed(f"cannot run {self.docker_bin}: {e}") from e
        if code in (126, 127):
            raise ActionFailed(f"no usable shell in container (exit {code})")
        return code
