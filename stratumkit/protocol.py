"""Line-oriented stratum client state machine that performs no I/O itself.

Bytes received from the pool go into :meth:`StratumProtocol.feed`; bytes to
send are collected with :meth:`StratumProtocol.drain_outgoing`. When the
protocol decides the link must be dropped it sets ``disconnect_reason`` and
leaves the actual closing to its owner.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from .connection import (
    ExtranonceError,
    PoolConnection,
    ResponsePleas,
    Session,
    Solution,
    StratumMode,
    WorkPackage,
    _json_to_string,
    parse_extranonce,
    process_error,
)
from .messages import (
    AUTHORIZE_ID,
    ETHEREUM_STRATUM_1,
    ETHEREUM_STRATUM_2,
    GET_WORK_ID,
    HASHRATE_ID,
    LOGIN_ID,
    SOLUTION_BASE_ID,
    SUBSCRIBE_ID,
    authorize_request,
    encode_line,
    extranonce_subscribe_request,
    get_work_request,
    hashrate_request,
    login_request,
    noop_request,
    solution_request,
    subscribe_request,
    version_reply,
)
from .notifications import (
    apply_mining_set,
    apply_set_difficulty,
    apply_set_extranonce,
    job_from_ethstratum2_notify,
    job_from_stratum_notify,
)
from .uint256 import Uint256

log = logging.getLogger(__name__)

DEFAULT_AGENT = "stratumkit/1.0"
_MISBEHAVING_ID = 999
_MAX_UINT32 = 0xFFFFFFFF

_MODE_NAMES = {
    StratumMode.STRATUM: "Stratum",
    StratumMode.ETHPROXY: "Eth-Proxy compatible",
    StratumMode.ETHEREUMSTRATUM: "EthereumStratum/1.0.0",
    StratumMode.ETHEREUMSTRATUM2: "EthereumStratum/2.0.0",
    StratumMode.AUTODETECT: "autodetection",
}

AcceptedCallback = Callable[[int, int, bool], None]
RejectedCallback = Callable[[int, int], None]


def _is_empty(value: Any) -> bool:
    """True for null and for empty arrays or objects, as JSON emptiness goes."""
    if value is None:
        return True
    if isinstance(value, (list, dict)):
        return not value
    return False


def _as_id(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        if not 0 <= value <= _MAX_UINT32:
            raise ValueError(f"message id out of range: {value}")
        return value
    if isinstance(value, float) and 0 <= value <= _MAX_UINT32:
        return int(value)
    raise TypeError(f"message id of type {type(value).__name__} is not an integer")


class StratumProtocol:
    """Speaks every supported stratum flavour over an abstract byte stream."""

    def __init__(
        self,
        connection: PoolConnection,
        *,
        agent: str = DEFAULT_AGENT,
        work_timeout: int = 180,
        response_timeout: int = 2,
        clock: Callable[[], float] = time.monotonic,
        on_connected: Optional[Callable[[], None]] = None,
        on_work: Optional[Callable[[WorkPackage], None]] = None,
        on_solution_accepted: Optional[AcceptedCallback] = None,
        on_solution_rejected: Optional[RejectedCallback] = None,
    ) -> None:
        self.connection = connection
        self.agent = agent
        self.work_timeout = work_timeout
        self.response_timeout = response_timeout
        self.on_connected = on_connected
        self.on_work = on_work
        self.on_solution_accepted = on_solution_accepted
        self.on_solution_rejected = on_solution_rejected
        self._clock = clock
        self.pleas = ResponsePleas(clock)
        self.session: Optional[Session] = None
        self.current = WorkPackage()
        self.connected = False
        self.auth_pending = False
        self.disconnect_reason: Optional[str] = None
        self._current_timestamp = clock()
        self._buffer = b""
        self._outgoing: List[bytes] = []
        self._new_job = False
        self._max_solution_id = 0

    @property
    def disconnect_requested(self) -> bool:
        """True once the protocol has decided the connection must be dropped."""
        return self.disconnect_reason is not None

    @property
    def subscribed(self) -> bool:
        return self.session is not None and self.session.subscribed

    @property
    def authorized(self) -> bool:
        return self.session is not None and self.session.authorized

    def _request_disconnect(self, reason: str) -> None:
        if self.disconnect_reason is None:
            self.disconnect_reason = reason
        log.info("Disconnect requested: %s", reason)

    def _send(self, message: Dict[str, Any]) -> None:
        self._outgoing.append(encode_line(message))

    def _start_session(self) -> None:
        now = self._clock()
        self.session = Session(started=now, last_tx_stamp=now)
        self._current_timestamp = now
        if self.on_connected:
            self.on_connected()

    def connection_made(self) -> None:
        """Reset state for a fresh socket and send the login for the selected flavour."""
        conn = self.connection
        self.connected = True
        conn.responds = True
        self.disconnect_reason = None
        self.session = None
        self.auth_pending = False
        self._buffer = b""
        self._outgoing.clear()
        self._new_job = False
        self._max_solution_id = 0
        self.pleas.clear()

        if conn.version < StratumMode.AUTODETECT:
            conn.set_stratum_mode(conn.version, True)
        elif not conn.stratum_mode_confirmed and conn.stratum_mode == StratumMode.AUTODETECT:
            conn.set_stratum_mode(StratumMode.ETHEREUMSTRATUM2, False)

        request = login_request(conn, self.agent)
        self.pleas.enqueue()
        self._send(request)

    def feed(self, data: bytes) -> Optional[WorkPackage]:
        """Consume received bytes; return the job to dispatch, if any arrived.

        Only the last job of one transmission is dispatched.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buffer += data
        self._new_job = False
        *lines, self._buffer = self._buffer.split(b"\n")
        for raw in lines:
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            log.debug(" << %s", line)
            try:
                message = json.loads(line)
            except ValueError as exc:
                log.warning("Stratum got invalid Json message : %s", exc)
                continue
            if not isinstance(message, dict):
                log.warning("Stratum got invalid Json message : not an object")
                continue
            try:
                self.process_response(message)
            except Exception as exc:  # a bad message must not kill the stream
                log.warning("Stratum got invalid Json message : %s", exc)
        if self._new_job:
            if self.on_work:
                self.on_work(self.current)
            return self.current
        return None

    def process_response(self, message: Mapping[str, Any]) -> None:
        """Handle one decoded JSON message from the pool."""
        conn = self.connection
        rpc_version = 2 if "jsonrpc" in message else 1
        request_id = _as_id(message.get("id", 0))
        is_success = _is_empty(message.get("error"))
        err_reason = "" if is_success else process_error(message)
        method = _json_to_string(message.get("method", ""))
        is_notification = method != "" or request_id == 0

        if (
            is_notification
            and not method
            and conn.stratum_mode == StratumMode.ETHPROXY
            and isinstance(message.get("result"), list)
        ):
            method = "mining.notify"

        if (rpc_version == 2 and message.get("jsonrpc") != "2.0") or (
            is_notification
            and _is_empty(message.get("params"))
            and _is_empty(message.get("result"))
        ):
            log.warning("Pool sent an invalid jsonrpc message. Disconnecting...")
            self._request_disconnect("invalid jsonrpc message")
            return

        if not is_notification:
            if not self._handle_reply(message, request_id, is_success, err_reason):
                return
            method = "mining.notify"
            is_notification = True

        if is_notification and conn.stratum_mode_confirmed:
            self._handle_notification(message, method, request_id, rpc_version)

    # Replies to our own requests

    def _handle_reply(
        self, message: Mapping[str, Any], request_id: int, is_success: bool, err_reason: str
    ) -> bool:
        """Process a reply; return True when it must be treated as a job notification."""
        conn = self.connection
        mode = conn.stratum_mode
        result = message.get("result")

        if request_id == LOGIN_ID:
            self.pleas.dequeue()
            if not is_success and not conn.stratum_mode_confirmed:
                log.info("Negotiation of %s failed. Trying another ...", _MODE_NAMES[mode])
                self._request_disconnect("negotiation failed")
                return False
            request = self._handle_login_reply(message, result, is_success)
            if request is not None:
                self._send(request)
            return False

        if request_id == SUBSCRIBE_ID:
            if mode == StratumMode.ETHEREUMSTRATUM2:
                self.pleas.dequeue()
                if not isinstance(result, str) or not result:
                    log.warning("Got invalid or missing session id. Disconnecting ...")
                    conn.mark_unrecoverable()
                    self._request_disconnect("invalid session id")
                    return False
                self.session.session_id = result
                self.session.subscribed = True
                self.auth_pending = True
                self.pleas.enqueue()
                self._send(authorize_request(conn))
            return False

        if request_id == AUTHORIZE_ID and mode != StratumMode.ETHEREUMSTRATUM2:
            self.pleas.dequeue()
            if is_success and isinstance(result, bool):
                is_success = result
            self.auth_pending = False
            self.session.authorized = is_success
            if not self.authorized:
                log.info("Worker %s not authorized : %s", conn.user_dot_worker(), err_reason)
                conn.mark_unrecoverable()
                self._request_disconnect("worker not authorized")
            else:
                log.info("Authorized worker %s", conn.user_dot_worker())
            return False

        if request_id == AUTHORIZE_ID:
            self.pleas.dequeue()
            if not is_success or not isinstance(result, str) or not result:
                log.info("Worker %s not authorized : %s", conn.user_dot_worker(), err_reason)
                conn.mark_unrecoverable()
                self._request_disconnect("worker not authorized")
                return False
            self.auth_pending = False
            self.session.authorized = True
            self.session.worker_id = result
            log.info("Authorized worker %s", conn.user_dot_worker())
            return False

        if SOLUTION_BASE_ID <= request_id <= self._max_solution_id:
            self._handle_solution_reply(message, request_id, is_success, err_reason, result)
            return False

        if request_id == GET_WORK_ID:
            return mode == StratumMode.ETHPROXY and isinstance(result, list)

        if request_id == HASHRATE_ID:
            if not is_success:
                log.warning("Submit hashRate failed : %s", err_reason or "Unspecified error")
            return False

        if request_id == _MISBEHAVING_ID:
            if not is_success and not conn.stratum_mode_confirmed:
                log.info("Negotiation of %s failed. Trying another ...", _MODE_NAMES[mode])
                self._request_disconnect("negotiation failed")
            elif not is_success and not self.subscribed:
                log.info("Subscription failed : %s", err_reason or "Unspecified error")
                self._request_disconnect("subscription failed")
            elif not is_success and not self.authorized:
                log.info("Worker not authorized : %s", err_reason or "Unspecified error")
                self._request_disconnect("worker not authorized")
            return False

        log.info("Got response for unknown message id [%d] Discarding...", request_id)
        return False

    def _login_rejected(self) -> None:
        conn = self.connection
        name = _MODE_NAMES[conn.stratum_mode]
        if conn.stratum_mode_confirmed:
            conn.mark_unrecoverable()
            log.info("Negotiation of %s failed. Change your connection parameters", name)
        else:
            log.info("Negotiation of %s failed. Trying another ...", name)
        self._request_disconnect("negotiation failed")

    def _handle_login_reply(
        self, message: Mapping[str, Any], result: Any, is_success: bool
    ) -> Optional[Dict[str, Any]]:
        conn = self.connection
        mode = conn.stratum_mode

        if mode == StratumMode.ETHEREUMSTRATUM2:
            is_success = (
                isinstance(result, dict)
                and result.get("proto") == ETHEREUM_STRATUM_2
                and all(key in result for key in ("encoding", "resume", "timeout", "maxerrors", "node"))
            )
            if not is_success:
                self._login_rejected()
                return None
            conn.set_stratum_mode(StratumMode.ETHEREUMSTRATUM2, True)
            log.info("Stratum mode : EthereumStratum/2.0.0")
            self._start_session()
            self.pleas.enqueue()
            return subscribe_request()

        if mode == StratumMode.ETHEREUMSTRATUM:
            first = result[0] if isinstance(result, list) and result else None
            is_success = (
                isinstance(first, list) and len(first) == 3 and first[2] == ETHEREUM_STRATUM_1
            )
            if not is_success:
                self._login_rejected()
                return None
            conn.set_stratum_mode(StratumMode.ETHEREUMSTRATUM, True)
            log.info("Stratum mode : EthereumStratum/1.0.0 (NiceHash)")
            self._start_session()
            self.session.subscribed = True
            self._send(extranonce_subscribe_request())
            self.auth_pending = True
            self.pleas.enqueue()
            return authorize_request(conn)

        if mode == StratumMode.ETHPROXY:
            if not is_success:
                self._login_rejected()
                return None
            conn.set_stratum_mode(StratumMode.ETHPROXY, True)
            log.info("Stratum mode : Eth-Proxy compatible")
            self._start_session()
            self.session.subscribed = True
            self.session.authorized = True
            return get_work_request()

        if mode == StratumMode.STRATUM:
            if not is_success:
                self._login_rejected()
                return None
            conn.set_stratum_mode(StratumMode.STRATUM, True)
            log.info("Stratum mode : Stratum")
            self._start_session()
            self.session.subscribed = True
            self.auth_pending = True
            request = authorize_request(conn, jsonrpc=True)
            self.pleas.enqueue()
            if isinstance(result, list) and len(result) > 1:
                enonce = _json_to_string(result[1])
                if enonce:
                    try:
                        self._set_extranonce(enonce)
                    except ExtranonceError as exc:
                        log.warning("Error while setting Extranonce : %s", exc)
                        self._request_disconnect("invalid extranonce")
                        return None
            return request

        return None

    def _set_extranonce(self, enonce: str) -> None:
        nonce, size = parse_extranonce(enonce)
        self.session.extra_nonce = nonce
        self.session.extra_nonce_size_bytes = size
        log.info("Extranonce set to %s", enonce)

    def _handle_solution_reply(
        self,
        message: Mapping[str, Any],
        request_id: int,
        is_success: bool,
        err_reason: str,
        result: Any,
    ) -> None:
        delay_ms = self.pleas.dequeue()
        stale = False
        if self.connection.stratum_mode != StratumMode.ETHEREUMSTRATUM2:
            if is_success and isinstance(result, bool):
                is_success = result
        elif not is_success:
            error = message.get("error")
            code = _json_to_string(error.get("code", "")) if isinstance(error, dict) else ""
            if code[:1] == "2":
                is_success = stale = True

        miner_index = request_id - SOLUTION_BASE_ID
        if is_success:
            if self.on_solution_accepted:
                self.on_solution_accepted(delay_ms, miner_index, stale)
        elif self.on_solution_rejected:
            log.warning("Reject reason : %s", err_reason or "Unspecified")
            self.on_solution_rejected(delay_ms, miner_index)

    # Notifications pushed by the pool

    def _accept_job(self, job: WorkPackage) -> None:
        self.current = job
        self._current_timestamp = self._clock()
        self._new_job = True

    def _handle_notification(
        self, message: Mapping[str, Any], method: str, request_id: int, rpc_version: int
    ) -> None:
        mode = self.connection.stratum_mode
        es1 = mode == StratumMode.ETHEREUMSTRATUM
        es2 = mode == StratumMode.ETHEREUMSTRATUM2

        if method == "mining.notify" and not es2:
            if not self.subscribed or self._new_job:
                return
            if mode == StratumMode.ETHPROXY and "result" in message:
                params = message.get("result")
            else:
                params = message.get("params")
            job = job_from_stratum_notify(params, self.session, mode)
            if job is not None:
                self._accept_job(job)
        elif method == "mining.notify":
            try:
                job = job_from_ethstratum2_notify(message.get("params"), self.session)
            except ValueError as exc:
                log.warning("%s. Discarding ...", exc)
                return
            self._accept_job(job)
        elif method == "mining.set_difficulty" and es1:
            apply_set_difficulty(self.session, message.get("params"))
        elif method == "mining.set_extranonce" and es1:
            try:
                apply_set_extranonce(self.session, message.get("params"))
            except ExtranonceError as exc:
                log.warning("Error while setting Extranonce : %s", exc)
                self._request_disconnect("invalid extranonce")
        elif method == "mining.set" and es2:
            params = message.get("params")
            if not isinstance(params, dict) or not params:
                log.warning("Got invalid mining.set message. Discarding ...")
                return
            try:
                apply_mining_set(self.session, params)
            except ExtranonceError as exc:
                log.warning("Error while setting Extranonce : %s", exc)
                self._request_disconnect("invalid extranonce")
        elif method == "mining.set_target":
            params = message.get("params")
            target = _json_to_string(params[0]) if isinstance(params, list) and params else ""
            self.current = dataclasses.replace(self.current, boundary=Uint256.from_hex(target))
            log.info("New target set to: %s", target)
        elif method == "mining.bye" and es2:
            log.info("%s requested connection close. Disconnecting ...", self.connection.host)
            self._request_disconnect("pool said bye")
        elif method == "client.get_version":
            self._send(version_reply(request_id, rpc_version, self.agent))
        else:
            log.warning("Got unknown method [%s] from pool. Discarding...", method)

    # Outgoing work

    def submit_hashrate(self, rate: int, worker_id: str) -> bool:
        """Queue a hashrate report; return False when not connected."""
        if not self.connected:
            return False
        session_worker = self.session.worker_id if self.session else ""
        self._send(hashrate_request(self.connection, rate, worker_id, session_worker))
        return True

    def submit_solution(self, solution: Solution) -> bool:
        """Queue a solution; return False when the worker is not authorized."""
        if not self.authorized:
            log.warning("Solution not submitted. Not authorized.")
            return False
        request_id = SOLUTION_BASE_ID + solution.midx
        self._max_solution_id = max(self._max_solution_id, request_id)
        request = solution_request(self.connection, solution, self.session.worker_id)
        self.pleas.enqueue()
        self._send(request)
        return True

    def check_timeouts(self, now: Optional[float] = None) -> bool:
        """Run the periodic checks; return True when a timeout requested a disconnect."""
        if not self.connected:
            return False
        now = self._clock() if now is None else now
        conn = self.connection
        session = self.session

        if conn.stratum_mode == StratumMode.ETHEREUMSTRATUM2 and session is not None:
            if int(now - session.last_tx_stamp) > session.timeout - 5:
                self._send(noop_request())

        if not len(self.pleas):
            return False

        delay_ms = int((now - self.pleas.oldest()) * 1000)
        if delay_ms >= self.response_timeout * 1000:
            if not conn.stratum_mode_confirmed and not conn.unrecoverable:
                self.pleas.clear()
                self.process_response({"id": LOGIN_ID, "result": None, "error": True})
                return False
            log.warning("No response received in %d seconds.", self.response_timeout)
            self.pleas.clear()
            self._request_disconnect("response timeout")
            return True

        if session is not None and int(now - self._current_timestamp) > self.work_timeout:
            log.warning("No new work received in %d seconds.", self.work_timeout)
            self.pleas.clear()
            self._request_disconnect("work timeout")
            return True
        return False

    def drain_outgoing(self) -> bytes:
        """Return and forget every queued line; nothing is returned when not connected."""
        data = b"".join(self._outgoing)
        self._outgoing.clear()
        if not self.connected:
            return b""
        if data and self.session is not None and self.connection.stratum_mode == StratumMode.ETHEREUMSTRATUM2:
            self.session.last_tx_stamp = self._clock()
        for line in data.splitlines():
            log.debug(" >> %s", line.decode("ascii"))
        return data