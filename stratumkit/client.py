"""Asynchronous stratum pool client built on asyncio streams.

The wire protocol lives in :class:`~stratumkit.protocol.StratumProtocol`;
this module resolves the pool, opens plain or TLS sockets, pumps bytes in
both directions, runs the periodic timeout checks and walks down through
the stratum flavours while autodetecting.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import os
import socket
import ssl
import time
from collections import deque
from typing import Any, Callable, Coroutine, Deque, List, Optional, Set, Tuple

from .connection import PoolConnection, SecureLevel, Solution, StratumMode, WorkPackage
from .protocol import DEFAULT_AGENT, AcceptedCallback, RejectedCallback, StratumProtocol
from .uint256 import Uint256

log = logging.getLogger(__name__)

_READ_SIZE = 4096
_TIMEOUT_ERRORS = (asyncio.TimeoutError, TimeoutError)

Endpoint = Tuple[str, int]


class EthStratumClient:
    """Keeps one connection to a stratum pool alive and talks to it."""

    def __init__(
        self,
        connection: PoolConnection,
        *,
        work_timeout: int = 180,
        response_timeout: int = 2,
        agent: str = DEFAULT_AGENT,
        workloop_interval: float = 1.0,
        on_connected: Optional[Callable[[], None]] = None,
        on_disconnected: Optional[Callable[[], None]] = None,
        on_work: Optional[Callable[[WorkPackage], None]] = None,
        on_solution_accepted: Optional[AcceptedCallback] = None,
        on_solution_rejected: Optional[RejectedCallback] = None,
    ) -> None:
        self.connection = connection
        self.response_timeout = response_timeout
        self.workloop_interval = workloop_interval
        self.on_disconnected = on_disconnected
        self.protocol = StratumProtocol(
            connection,
            agent=agent,
            work_timeout=work_timeout,
            response_timeout=response_timeout,
            on_connected=on_connected,
            on_work=on_work,
            on_solution_accepted=on_solution_accepted,
            on_solution_rejected=on_solution_rejected,
        )
        self._connecting = False
        self._disconnecting = False
        self._connected = False
        self._endpoints: Deque[Endpoint] = deque()
        self._writer: Optional[asyncio.StreamWriter] = None
        self._tasks: Set[asyncio.Task] = set()
        self._io_tasks: List[asyncio.Task] = []

    # Status

    def is_pending(self) -> bool:
        """True while a connection or disconnection is in progress."""
        return self._connecting or self._disconnecting

    def is_connected(self) -> bool:
        """True when a socket is established and nothing is pending."""
        return self._connected and not self.is_pending()

    @property
    def current_work(self) -> WorkPackage:
        """The last job received from the pool."""
        return self.protocol.current

    @property
    def current_header(self) -> Uint256:
        """The header hash of the last job received from the pool."""
        return self.protocol.current.header

    # Connection life cycle

    async def connect(self) -> None:
        """Resolve the pool and try its addresses in turn until one accepts."""
        if self._connecting or self._connected:
            return
        self.protocol.auth_pending = False
        try:
            self._endpoints = deque(await self._resolve())
        except OSError as exc:
            log.warning("Could not resolve host %s, %s", self.connection.host, exc)
            await self._finalize()
            return
        await self._start_connect()

    async def disconnect(self) -> None:
        """Close the socket and settle the client into its disconnected state."""
        if self._disconnecting:
            return
        self._disconnecting = True
        self._connected = False
        self.protocol.connected = False

        current = asyncio.current_task()
        for task in self._io_tasks:
            if task is not current:
                task.cancel()
        self._io_tasks = []

        writer = self._writer
        if writer is not None:
            writer.close()
            try:
                await asyncio.wait_for(writer.wait_closed(), self.response_timeout)
            except (OSError, *_TIMEOUT_ERRORS) as exc:
                log.warning("Error while disconnecting: %s", exc)
        await self._finalize()

    async def _resolve(self) -> List[Endpoint]:
        host, port = self.connection.host, int(self.connection.port)
        try:
            ipaddress.ip_address(host)
        except ValueError:
            pass
        else:
            return [(host, port)]
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        endpoints: List[Endpoint] = []
        for *_, address in infos:
            endpoint = (address[0], address[1])
            if endpoint not in endpoints:
                endpoints.append(endpoint)
        return endpoints

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        level = self.connection.sec_level
        if level is SecureLevel.NONE:
            return None
        context = ssl.create_default_context()
        if level is SecureLevel.TLS12:
            context.minimum_version = ssl.TLSVersion.TLSv1_2
            context.maximum_version = ssl.TLSVersion.TLSv1_2
        if "SSL_NOVERIFY" in os.environ:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            return context
        cert_file = os.environ.get("SSL_CERT_FILE")
        if cert_file:
            try:
                context.load_verify_locations(cafile=cert_file)
            except (OSError, ssl.SSLError):
                log.warning(
                    "Failed to load ca certificates from %s. "
                    "It is possible that certificate verification can fail.",
                    cert_file,
                )
        return context

    async def _open(
        self, host: str, port: int
    ) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        context = self._ssl_context()
        if context is None:
            return await asyncio.open_connection(host, port)
        return await asyncio.open_connection(
            host, port, ssl=context, server_hostname=self.connection.host
        )

    async def _start_connect(self) -> None:
        if self._connecting:
            return
        while self._endpoints:
            host, port = self._endpoints[0]
            self._connecting = True
            log.debug("Trying %s:%s ...", host, port)
            try:
                reader, writer = await asyncio.wait_for(
                    self._open(host, port), self.response_timeout
                )
            except ssl.SSLError as exc:
                self._connecting = False
                self._handshake_failed(exc)
                await self._finalize()
                return
            except (OSError, *_TIMEOUT_ERRORS) as exc:
                self._connecting = False
                log.warning("Error  %s:%s [ %s ]", host, port, exc or "Timeout")
                self._endpoints.popleft()
                continue
            self._connecting = False
            self._established(reader, writer)
            return
        log.warning("No more IP addresses to try for host: %s", self.connection.host)
        await self._finalize()

    def _handshake_failed(self, exc: ssl.SSLError) -> None:
        log.warning("SSL/TLS Handshake failed: %s", exc)
        if isinstance(exc, ssl.SSLCertVerificationError):
            log.warning(
                "Root certs may be missing, the pool may use a self-signed certificate "
                "or the host name may not match the certificate. Set SSL_CERT_FILE to a "
                "valid bundle, or SSL_NOVERIFY to skip verification at your own risk."
            )
        # The certificate is bound to the host name: other addresses fail alike.
        self.connection.responds = True
        self.connection.mark_unrecoverable()

    def _established(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        sock = writer.get_extra_info("socket")
        if sock is not None:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError as exc:
                log.debug("Could not set socket options: %s", exc)
        self._writer = writer
        self._connected = True
        self.protocol.connection_made()
        self._flush()
        self._io_tasks = [
            self._post(self._read_loop(reader)),
            self._post(self._work_loop()),
        ]

    async def _finalize(self) -> None:
        conn = self.connection
        self._writer = None
        self._connected = False
        self.protocol.connected = False

        session = self.protocol.session
        if session is not None:
            conn.duration += time.monotonic() - session.started
        self.protocol.session = None
        self.protocol.auth_pending = False
        self._disconnecting = False

        if not conn.unrecoverable and not conn.stratum_mode_confirmed and conn.responds:
            mode = conn.stratum_mode
            if mode == StratumMode.STRATUM:
                conn.mark_unrecoverable()
            elif mode != StratumMode.AUTODETECT:
                # Autodetection: retry with the next flavour down.
                conn.set_stratum_mode(int(mode) - 1, False)
                self._post(self._start_connect())
                return

        self.protocol.pleas.clear()
        if self.on_disconnected:
            self.on_disconnected()

    # Data pumps

    def _post(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _flush(self) -> None:
        data = self.protocol.drain_outgoing()
        writer = self._writer
        if data and writer is not None and not writer.is_closing():
            writer.write(data)

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                data = await reader.read(_READ_SIZE)
            except OSError as exc:
                self._read_failed(str(exc))
                return
            if not data:
                self._read_failed(None)
                return
            self.protocol.feed(data)
            self._flush()
            if self.protocol.disconnect_requested:
                self._post(self.disconnect())
                return
            if not self.is_connected():
                return

    def _read_failed(self, reason: Optional[str]) -> None:
        if not self.is_connected():
            return
        if self.protocol.auth_pending:
            log.warning(
                "Error while waiting for authorization from pool. "
                "Double check your pool credentials."
            )
            self.connection.mark_unrecoverable()
        if reason is None:
            log.info("Connection remotely closed by %s", self.connection.host)
        else:
            log.warning("Socket read failed: %s", reason)
        self._post(self.disconnect())

    async def _work_loop(self) -> None:
        while self._connected:
            await asyncio.sleep(self.workloop_interval)
            if not self.is_connected():
                return
            timed_out = self.protocol.check_timeouts()
            self._flush()
            if timed_out and self._endpoints:
                self._endpoints.popleft()
            if self.protocol.disconnect_requested:
                self._post(self.disconnect())
                return

    # Outgoing work

    def submit_hashrate(self, rate: int, worker_id: str) -> bool:
        """Send a hashrate report; return False when not connected."""
        if not self.is_connected():
            return False
        sent = self.protocol.submit_hashrate(rate, worker_id)
        self._flush()
        return sent

    def submit_solution(self, solution: Solution) -> bool:
        """Send a solution; return False when the worker is not authorized."""
        sent = self.protocol.submit_solution(solution)
        self._flush()
        return sent