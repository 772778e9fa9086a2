#!/usr/bin/env python3
# adminpanel/cli.py
import argparse
import sys
import time

from rich.console import Console
from rich.table import Table

from adminpanel.errors import OTPError
from adminpanel.totp import (
    DEFAULT_DIGITS, DEFAULT_PERIOD,
    current_otp, match_offset, generate_base32_secret,
)

console = Console()


def _otp_table(secret: str, result: dict) -> Table:
    table = Table(title="TOTP")
    for c in ["Code", "Valid until", "Remaining (s)", "Digits", "Period (s)"]:
        table.add_column(c)
    table.add_row(
        result["otp"],
        time.strftime("%H:%M:%S", time.localtime(result["valid_until"])),
        str(int(result["remaining_time"])),
        str(result["digits"]),
        str(result["period"]),
    )
    table.caption = f"secret {secret[:4]}… ({len(secret)} chars)"
    return table


def cmd_generate(args) -> int:
    now = args.time if args.time is not None else int(time.time())
    result = current_otp(args.secret, now, digits=args.digits, period=args.period)
    console.print(_otp_table(args.secret, result))
    return 0


def cmd_validate(args) -> int:
    now = args.time if args.time is not None else int(time.time())
    matched = match_offset(args.secret, args.token, now, window=args.window,
                           digits=args.digits, period=args.period)
    if matched is None:
        console.print("[red]Invalid code.[/red]")
        return 1
    console.print(f"[green]Valid[/green] (matched step offset {matched:+d})")
    return 0


def cmd_secret(args) -> int:
    console.print(generate_base32_secret(args.length))
    return 0


def cmd_watch(args) -> int:
    console.print("[bold cyan]Watching TOTP codes (Ctrl-C to stop)...[/bold cyan]")
    try:
        while True:
            result = current_otp(args.secret, int(time.time()), digits=args.digits, period=args.period)
            console.clear()
            console.print(_otp_table(args.secret, result))
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("[red]Stopped by user.[/red]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="adminpanel-otp", description="TOTP codes and secrets")
    sub = parser.add_subparsers(dest="command", required=True)

    def otp_options(p):
        p.add_argument("--digits", type=int, default=DEFAULT_DIGITS)
        p.add_argument("--period", type=int, default=DEFAULT_PERIOD)

    p = sub.add_parser("generate", help="print the current code for a secret")
    p.add_argument("secret")
    p.add_argument("--time", type=int, help="Unix time to use instead of now")
    otp_options(p)
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("validate", help="check a code against a secret")
    p.add_argument("secret")
    p.add_argument("token")
    p.add_argument("--window", type=int, default=1)
    p.add_argument("--time", type=int, help="Unix time to use instead of now")
    otp_options(p)
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("secret", help="generate a new Base32 secret")
    p.add_argument("--length", type=int, default=32)
    p.set_defaults(func=cmd_secret)

    p = sub.add_parser("watch", help="show the code for a secret as it rolls over")
    p.add_argument("secret")
    otp_options(p)
    p.set_defaults(func=cmd_watch)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (OTPError, ValueError) as exc:
        console.print(str(exc), style="red", markup=False)
        return 2


if __name__ == "__main__":
    sys.exit(main())
