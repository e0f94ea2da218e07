"""
Main entry point for the Tornjak credential store.

Usage:
    tornjak add <service> <username>   Add a new password
    tornjak get <service>              Copy the password for a service to the clipboard
    tornjak list                       List all stored services
    tornjak delete <service>           Delete the password(s) for a service
"""

import sys
import getpass
import logging
import argparse
from typing import Callable, List, Optional

from . import config
from .audit import AuditLog
from .clipboard import QtClipboard, get_clipboard
from .crypto import create_gateway
from .exceptions import TornjakError, ValidationError
from .exposure import (
    DetachedScheduler,
    ExposureManager,
    FileGenerationCounter,
    GenerationCounter,
    QtScheduler,
)
from .retrieval import CredentialRetriever
from .storage import StorageManager

logger = logging.getLogger(__name__)


class TornjakApp:
    """Wires settings, crypto gateway, storage and clipboard together for one command."""

    def __init__(self, settings: config.Settings, gateway=None, sink=None, exposure=None,
                 prompt: Optional[Callable[[str], str]] = None, out=None):
        self.settings = settings
        self.gateway = gateway or create_gateway(settings)
        self.sink = sink
        self.prompt = prompt or getpass.getpass
        self.out = out or sys.stdout
        self.storage = StorageManager(
            settings.store_path, self.gateway, force_reprompt=settings.force_reprompt
        )
        self.audit = AuditLog(settings.audit_log_path)
        self._exposure = exposure

    def _print(self, message: str = "") -> None:
        print(message, file=self.out)

    def check_dependencies(self) -> None:
        """Fail early if gpg or a clipboard is missing."""
        self.gateway.check_available()
        if self.sink is None:
            self.sink = get_clipboard(self.settings.clipboard)

    @property
    def exposure(self) -> ExposureManager:
        if self._exposure is None:
            if self.sink is None:
                self.sink = get_clipboard(self.settings.clipboard)
            if isinstance(self.sink, QtClipboard):
                self._exposure = ExposureManager(self.sink, GenerationCounter(), QtScheduler())
            else:
                state = self.settings.exposure_state_path
                self._exposure = ExposureManager(
                    self.sink, FileGenerationCounter(state), DetachedScheduler(state, "command")
                )
        return self._exposure

    def add_password(self, service: str, username: str) -> int:
        self.gateway.resolve_recipient()
        try:
            secret = self.prompt(f"Enter password for {service}: ")
        except EOFError:
            raise ValidationError("Failed to read password") from None
        self.storage.add_entry(service, username, secret)
        self.audit.log_action("ADD", f"service={service}")
        self._print("Password added successfully!")
        return 0

    def get_password(self, service: str) -> int:
        retriever = CredentialRetriever(self.storage, self.exposure, ttl=self.settings.clipboard_timeout)
        username, handle = retriever.retrieve(service)
        self.audit.log_action("GET", f"service={service}")
        self._print(f"Username: {username}")
        self._print(f"Password copied to clipboard. Will be cleared in {self.settings.clipboard_timeout} seconds.")
        if isinstance(self.sink, QtClipboard):
            self._hold_qt_clipboard(handle)
        return 0

    def _hold_qt_clipboard(self, handle) -> None:
        # A Qt selection disappears with its owner, so stay alive until the wipe.
        from PyQt5.QtCore import QTimer

        self._print("Keeping the clipboard alive until it is cleared...")
        QTimer.singleShot(int(handle.ttl * 1000) + 100, self.sink.app.quit)
        self.sink.app.exec_()
        handle.revoke_now()
        self._print("Clipboard cleared.")

    def list_services(self) -> int:
        retriever = CredentialRetriever(self.storage, self.exposure, ttl=self.settings.clipboard_timeout)
        services = retriever.list_services()
        self.audit.log_action("LIST", f"{len(services)} service(s)")
        self._print("Stored services:")
        for service in services:
            self._print(service)
        return 0

    def delete_password(self, service: str) -> int:
        self.gateway.resolve_recipient()
        removed = self.storage.delete_entries(service)
        self.audit.log_action("DELETE", f"service={service} removed={removed}")
        if removed:
            self._print(f"Password(s) for {service} deleted successfully!")
        else:
            self._print(f"No password found for service: {service}. Nothing was deleted.")
        return 0

    def run(self, args: argparse.Namespace) -> int:
        self.check_dependencies()
        if args.command == "add":
            return self.add_password(args.service, args.username)
        if args.command == "get":
            return self.get_password(args.service)
        if args.command == "list":
            return self.list_services()
        if args.command == "delete":
            return self.delete_password(args.service)
        raise ValidationError(f"Unknown command {args.command!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=config.APP_NAME,
        description="Password manager keeping credentials in one GPG-encrypted file.",
    )
    parser.add_argument("--version", action="version", version=f"{config.APP_NAME} {config.APP_VERSION}")
    parser.add_argument("--store", help="path of the encrypted password file")
    parser.add_argument("--timeout", type=int, help="seconds before the clipboard is cleared")
    parser.add_argument("--backend", choices=config.BACKENDS, help="encryption backend")
    parser.add_argument("--key", dest="key_file", help="private key file for the keyfile backend")
    parser.add_argument("--recipient", help="GPG key id, fingerprint or user id to encrypt to")
    parser.add_argument("--clipboard", choices=config.CLIPBOARD_BACKENDS, help="clipboard backend")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="more logging (repeatable)")

    sub = parser.add_subparsers(dest="command", metavar="command")
    add = sub.add_parser("add", help="add a new password")
    add.add_argument("service")
    add.add_argument("username")
    get = sub.add_parser("get", help="copy the password for a service to the clipboard")
    get.add_argument("service")
    sub.add_parser("list", help="list all stored services")
    delete = sub.add_parser("delete", help="delete the password(s) for a service")
    delete.add_argument("service")
    return parser


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=config.LOG_FORMAT)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    try:
        settings = config.load_settings(
            store=args.store,
            clipboard_timeout=args.timeout,
            backend=args.backend,
            key_file=args.key_file,
            recipient=args.recipient,
            clipboard=args.clipboard,
        )
        return TornjakApp(settings).run(args)
    except TornjakError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
