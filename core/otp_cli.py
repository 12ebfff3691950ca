#!/usr/bin/env python3
"""
otp_cli.py — CLI for SmartDrop access codes.

Subcommands:
- code       : print the code valid now (or at --at)
- watch      : live code + countdown, refreshed on every 30s rollover
- verify     : check a code typed at the box
- set-secret : store the Base32 secret in the secret file
- send       : send the current code to a rider by SMS
- history    : show the most recent deliveries (--clear to delete them)
- test-sms   : check the SMS provider configuration

Configuration comes from the environment (BASE32_SECRET_KEY, SMS_PROVIDER, ...)
or the secret file, see core/config.py.
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from dataclasses import replace

from . import otp_core
from .config import SECRET_FILE, load_config, save_secret, setup_logging
from .errors import SmartDropError
from .scheduler import CodeSession, CountdownScheduler

logger = logging.getLogger(__name__)


def _require_secret(config) -> str:
    if not config.secret:
        raise SystemExit("[!] No secret configured. Set BASE32_SECRET_KEY or run 'set-secret'.")
    return config.secret


# --- CLI command handlers ---
def cmd_code(args, config):
    secret = _require_secret(config)
    digits = args.digits if args.digits is not None else config.digits
    access = otp_core.generate_code(secret, args.at, digits=digits)
    logger.debug("Counter %d, digits %d", access.counter, digits)
    now = args.at if args.at is not None else time.time()
    print(f"Code: {access.code}  (expires at {access.expires_at}, {access.seconds_remaining(now)}s left)")


def cmd_watch(args, config):
    session = CodeSession(_require_secret(config), digits=config.digits)
    last = {"code": None}

    def on_tick(snapshot, remaining):
        if snapshot is None:
            return
        if snapshot.code != last["code"]:
            print(f"\nCode: {snapshot.code}  (valid ~{remaining:2d}s)")
            last["code"] = snapshot.code
        else:
            print(f".. {remaining:2d}s left", end='\r', flush=True)

    def on_error(error):
        print(f"\n[!] {error}", file=sys.stderr)

    scheduler = CountdownScheduler(session, on_tick=on_tick, on_error=on_error)
    print("Press Ctrl+C to quit. Refreshing the access code every 30s...")

    async def _watch():
        await scheduler.start()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        print("\nBye.")
    finally:
        scheduler.cancel()


def cmd_verify(args, config):
    session = CodeSession(_require_secret(config), digits=config.digits)
    if session.verify(args.code, window=args.window, now=args.at):
        print("[+] Access code is VALID")
    else:
        print("[-] Access code is INVALID")
        return 1
    return 0


def cmd_set_secret(args, config):
    secret = args.secret.strip()
    key = otp_core.base32_decode(secret)  # fail fast on a typo'd secret
    path = args.file or os.environ.get("SMARTDROP_SECRET_FILE", SECRET_FILE)
    digits = args.digits if args.digits is not None else config.digits
    if not 1 <= digits <= otp_core.MAX_DIGITS:
        raise ValueError(f"digits must be between 1 and {otp_core.MAX_DIGITS}")
    save_secret(secret, path=path, digits=digits)
    print(f"[*] Secret saved to {path} ({len(key)} key bytes, {otp_core.mask_secret(secret)})")


def _delivery_service(config):
    from backend.delivery import DeliveryService
    from backend.sms_service import get_provider
    from database.db_manager import ensure_database

    ensure_database(config.database_file)
    session = CodeSession(config.secret or None, digits=config.digits)
    provider = None
    if config.provider_ready:
        provider = get_provider(config.sms_provider, **config.provider_settings())
    return DeliveryService(config, session, provider)


def cmd_send(args, config):
    from backend.delivery import DeliveryError

    if args.provider:
        config = replace(config, sms_provider=args.provider)
    service = _delivery_service(config)
    try:
        record = service.send_code(args.phone, custom_message=args.message, box_id=args.box)
    except DeliveryError as e:
        print(f"[!] Delivery failed: {e}", file=sys.stderr)
        return 1
    print(f"[+] Access code sent to {record.phone} via {record.provider}")
    print(f"    Box: {record.box_id}  Message ID: {record.message_id}")
    return 0


def cmd_history(args, config):
    service = _delivery_service(config)
    if args.clear:
        removed = service.clear_history()
        print(f"[*] Removed {removed} deliveries from history")
        return 0
    records = service.history(args.limit)
    if not records:
        print("No deliveries yet.")
        return 0
    for record in records:
        print(f"#{record.code}  {record.timestamp}  {record.phone}  {record.box_id}  via {record.provider}  [{record.status}]")
    return 0


def cmd_test_sms(args, config):
    from backend.sms_service import get_provider

    name = args.provider or config.sms_provider
    try:
        provider = get_provider(name, **config.provider_settings(name))
    except ValueError as e:
        print(f"[!] {name}: {e}", file=sys.stderr)
        return 1
    result = provider.test_configuration()
    if result.get("success"):
        print(f"[+] {name} is configured correctly!")
        if result.get("quota_remaining") is not None:
            print(f"    Quota remaining: {result['quota_remaining']}")
        return 0
    print(f"[-] {name} configuration failed: {result.get('message')}")
    return 1


def cmd_help(args, config):
    print("'smartdrop -h' for help.")


# --- Argparse builder ---
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="SmartDrop access codes (TOTP, HMAC-SHA1, 30s)")
    p.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd")
    p.set_defaults(func=cmd_help)

    # code
    pc = sub.add_parser("code", help="Print the access code valid now")
    pc.add_argument("--at", type=float, help="Unix time to generate for (default: now)")
    pc.add_argument("--digits", type=int, help="Override number of digits")
    pc.set_defaults(func=cmd_code)

    # watch
    pw = sub.add_parser("watch", help="Show the access code with a live countdown")
    pw.set_defaults(func=cmd_watch)

    # verify
    pv = sub.add_parser("verify", help="Verify an access code")
    pv.add_argument("--code", required=True, help="Code to verify")
    pv.add_argument("--window", type=int, default=1, help="Allowed +/- step window")
    pv.add_argument("--at", type=float, help="Unix time to verify at (default: now)")
    pv.set_defaults(func=cmd_verify)

    # set-secret
    ps = sub.add_parser("set-secret", help="Store the Base32 secret in the secret file")
    ps.add_argument("secret", help="Base32 secret, e.g. JBSWY3DPEHPK3PXP")
    ps.add_argument("--file", help="Secret file path (default: SMARTDROP_SECRET_FILE or otp_secret.json)")
    ps.add_argument("--digits", type=int, help="Code length stored with the secret")
    ps.set_defaults(func=cmd_set_secret)

    # send
    pd = sub.add_parser("send", help="Send the current access code by SMS")
    pd.add_argument("--phone", required=True, help="Rider phone, e.g. 09171234567")
    pd.add_argument("--message", help="Custom message instead of the default template")
    pd.add_argument("--box", help="Smart box id (default: SMARTBOX_ID)")
    pd.add_argument("--provider", choices=["mock", "textbelt", "twilio", "semaphore"],
                    help="Override SMS_PROVIDER")
    pd.set_defaults(func=cmd_send)

    # history
    ph = sub.add_parser("history", help="Show recent deliveries")
    ph.add_argument("--limit", type=int, help="Number of deliveries (default: history limit)")
    ph.add_argument("--clear", action="store_true", help="Delete the delivery history")
    ph.set_defaults(func=cmd_history)

    # test-sms
    pt = sub.add_parser("test-sms", help="Check the SMS provider configuration")
    pt.add_argument("--provider", choices=["mock", "textbelt", "twilio", "semaphore"])
    pt.set_defaults(func=cmd_test_sms)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config()
    except ValueError as e:
        print(f"[!] Configuration error: {e}", file=sys.stderr)
        return 2
    setup_logging("DEBUG" if args.verbose else config.log_level)
    try:
        return args.func(args, config) or 0
    except SmartDropError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
