from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .constants import (
    B_CLIENT_ID,
    B_FROM,
    B_FROM_CLIENT_ID,
    B_NEW_USERNAME,
    B_OLD_USERNAME,
    B_TARGET_CLIENT_ID,
    B_TEXT,
    B_TO,
    B_TOTAL_USERS,
    B_USERNAME,
    B_USERS,
    ERR_INVALID_FORMAT,
    K_MESSAGE,
    T_CHAT,
    T_ECHO,
    T_GET_USERS,
    T_PING,
    T_PONG,
    T_PRIVATE_MESSAGE,
    T_PRIVATE_MESSAGE_SENT,
    T_SET_USERNAME,
    T_USER_LIST,
    T_USER_RENAMED,
    T_USERNAME_CHANGED,
)
from .envelope import decode_inbound, make_envelope, message_type
from .registry import ConnectionRecord, Handle
from .util import coerce_client_id, display_value, normalize_username

if TYPE_CHECKING:
    from .broadcast import Outgoing
    from .service import RelayService


class MessageRouter:
    """
    Interprets inbound payloads and dispatches them by ``type``.

    This class is responsible for:
    - Decoding inbound text and reporting undecodable payloads
    - Dispatching set_username, chat, private_message, get_users and ping
    - Echoing anything it does not recognise

    Required-field failures on known types are dropped without a reply.
    Extra fields are always ignored.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("wsrelayd.router")

    def route(self, handle: Handle, data: str | bytes, outgoing: Outgoing) -> None:
        """
        Main entry point for one inbound payload.

        Must be called with the state lock held.
        """
        rec = self.hub.registry.lookup_by_handle(handle)
        if rec is None:
            return

        self.hub.stats.inc("msgs_in")
        self.hub.stats.inc(
            "bytes_in", len(data.encode("utf-8")) if isinstance(data, str) else len(data)
        )

        try:
            value = decode_inbound(data)
        except (ValueError, RecursionError) as e:
            self.hub.stats.inc("msgs_bad")
            self.log.debug(
                "Bad message client_id=%s bytes=%s err=%s", rec.id, len(data), e
            )
            self.hub.emit_error(outgoing, handle, ERR_INVALID_FORMAT)
            return

        t = message_type(value)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX client_id=%s t=%s bytes=%s", rec.id, t, len(data)
            )

        if t == T_SET_USERNAME:
            self._handle_set_username(handle, rec, value, outgoing)
        elif t == T_CHAT:
            self._handle_chat(handle, rec, value, outgoing)
        elif t == T_PRIVATE_MESSAGE:
            self._handle_private_message(handle, rec, value, outgoing)
        elif t == T_GET_USERS:
            self._handle_get_users(handle, outgoing)
        elif t == T_PING:
            self._handle_ping(handle, outgoing)
        else:
            self._handle_echo(handle, value, outgoing)

    def _handle_set_username(
        self,
        handle: Handle,
        rec: ConnectionRecord,
        msg: dict[str, Any],
        outgoing: Outgoing,
    ) -> None:
        new_name = normalize_username(
            msg.get(B_USERNAME), self.hub.config.username_max_chars
        )
        if new_name is None:
            return

        old_name = self.hub.registry.rename(handle, new_name)
        if old_name is None:
            return

        self.hub.stats.inc("renames")
        self.log.info(
            "Rename client_id=%s old=%r new=%r", rec.id, old_name, new_name
        )

        self.hub.broadcaster.send_to(
            outgoing,
            handle,
            make_envelope(
                T_USERNAME_CHANGED,
                {
                    K_MESSAGE: f'Username changed from "{old_name}" to "{new_name}"',
                    B_USERNAME: new_name,
                },
            ),
        )
        self.hub.broadcaster.broadcast_all(
            outgoing,
            make_envelope(
                T_USER_RENAMED,
                {
                    K_MESSAGE: f"{old_name} changed username to {new_name}",
                    B_OLD_USERNAME: old_name,
                    B_NEW_USERNAME: new_name,
                    B_CLIENT_ID: rec.id,
                },
            ),
        )

    def _handle_chat(
        self,
        handle: Handle,
        rec: ConnectionRecord,
        msg: dict[str, Any],
        outgoing: Outgoing,
    ) -> None:
        text = msg.get(B_TEXT)
        if not isinstance(text, str) or not text.strip():
            return

        env = make_envelope(
            T_CHAT,
            {B_USERNAME: rec.username, B_CLIENT_ID: rec.id, B_TEXT: text},
        )
        n = self.hub.broadcaster.broadcast_except(outgoing, env, exclude=handle)
        self.hub.stats.inc("chats_forwarded")
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Chat client_id=%s recipients=%s", rec.id, n)

    def _handle_private_message(
        self,
        handle: Handle,
        rec: ConnectionRecord,
        msg: dict[str, Any],
        outgoing: Outgoing,
    ) -> None:
        target = msg.get(B_TARGET_CLIENT_ID)
        text = msg.get(B_TEXT)
        if not target or not text:
            return

        target_id = coerce_client_id(target)
        found = (
            self.hub.registry.lookup_by_id(target_id) if target_id is not None else None
        )
        if found is None:
            self.hub.emit_error(
                outgoing, handle, f"Target client {display_value(target)} not found"
            )
            return

        target_handle, target_rec = found
        self.hub.broadcaster.send_to(
            outgoing,
            target_handle,
            make_envelope(
                T_PRIVATE_MESSAGE,
                {B_FROM: rec.username, B_FROM_CLIENT_ID: rec.id, B_TEXT: text},
            ),
        )
        self.hub.broadcaster.send_to(
            outgoing,
            handle,
            make_envelope(T_PRIVATE_MESSAGE_SENT, {B_TO: target_rec.username, B_TEXT: text}),
        )
        self.hub.stats.inc("private_messages")

    def _handle_get_users(self, handle: Handle, outgoing: Outgoing) -> None:
        registry = self.hub.registry
        users = [r.to_user_entry() for r in registry.snapshot()]
        self.hub.stats.inc("user_lists")
        self.hub.broadcaster.send_to(
            outgoing,
            handle,
            make_envelope(T_USER_LIST, {B_USERS: users, B_TOTAL_USERS: registry.size()}),
        )

    def _handle_ping(self, handle: Handle, outgoing: Outgoing) -> None:
        self.hub.stats.inc("pings_in")
        self.hub.broadcaster.send_to(outgoing, handle, make_envelope(T_PONG))

    def _handle_echo(self, handle: Handle, value: Any, outgoing: Outgoing) -> None:
        self.hub.stats.inc("echoes")
        self.hub.broadcaster.send_to(
            outgoing, handle, make_envelope(T_ECHO, {K_MESSAGE: value})
        )
