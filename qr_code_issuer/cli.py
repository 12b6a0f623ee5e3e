"""CLI entry point for QR Code Issuer."""

import argparse
import logging
import os
import sys

from qr_code_issuer import (
    DEFAULT_ALPHABET,
    DEFAULT_DB_PATH,
    DEFAULT_LENGTH,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_QR_SIZE,
    __version__,
)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qr-code-issuer",
        description="Issue unique random codes and save each one as a QR code image.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One fresh 10-character code, saved to qr_codes/<CODE>.png
  python -m qr_code_issuer

  # 50 codes of 8 characters from an unambiguous alphabet
  python -m qr_code_issuer --batch 50 --len 8 \\
    --alphabet "ABCDEFGHJKMNPQRSTVWXYZ23456789"

  # Register a code that was handed out elsewhere, without issuing new ones
  python -m qr_code_issuer --add-used "abc123xyz0" --batch 0
        """,
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    # Storage / output
    parser.add_argument(
        "--db",
        default=os.environ.get("QR_CODE_ISSUER_DB", DEFAULT_DB_PATH),
        help="SQLite path or SQLAlchemy URL of the code ledger "
             f"(env QR_CODE_ISSUER_DB, default: {DEFAULT_DB_PATH})",
    )
    parser.add_argument(
        "--dir",
        default=os.environ.get("QR_CODE_ISSUER_DIR", DEFAULT_OUTPUT_DIR),
        help=f"Output directory for PNGs (env QR_CODE_ISSUER_DIR, default: {DEFAULT_OUTPUT_DIR})",
    )

    # Generation parameters
    parser.add_argument(
        "--batch",
        type=int,
        default=1,
        help="How many fresh codes to generate. Default: 1",
    )
    parser.add_argument(
        "--len",
        dest="length",
        type=int,
        default=DEFAULT_LENGTH,
        help=f"Code length. Default: {DEFAULT_LENGTH}",
    )
    parser.add_argument(
        "--alphabet",
        default=DEFAULT_ALPHABET,
        help="Characters to use (uppercased before use). Default: A-Z and 0-9",
    )
    parser.add_argument(
        "--size",
        type=int,
        default=DEFAULT_QR_SIZE,
        help=f"QR image size in px. Default: {DEFAULT_QR_SIZE}",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Give up after this many colliding draws for one code. Default: unlimited",
    )
    parser.add_argument(
        "--add-used",
        default=None,
        metavar="CODE",
        help="Record an existing code as used before generating",
    )

    # Flags
    parser.add_argument(
        "--no-preview",
        action="store_true",
        help="Do not print the QR code to the terminal",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Decode each written PNG and check it matches the code (needs pyzbar)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log issuance details to stderr",
    )

    return parser


def _validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.batch < 0:
        parser.error("--batch cannot be negative")
    if args.length < 1:
        parser.error("--len must be at least 1")
    if args.size < 1:
        parser.error("--size must be at least 1")
    if args.max_attempts is not None and args.max_attempts < 1:
        parser.error("--max-attempts must be at least 1")

    from qr_code_issuer.issuer import normalize_alphabet

    try:
        normalize_alphabet(args.alphabet)
    except ValueError as e:
        parser.error(f"--alphabet: {e}")


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    _validate_args(parser, args)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    # Lazy imports for faster --help
    from qr_code_issuer.errors import AlreadyRecordedError, Error
    from qr_code_issuer.issuer import Issuer, RetryPolicy
    from qr_code_issuer.ledger import Ledger
    from qr_code_issuer.qr_generator import render_qr_png, show_qr_terminal

    try:
        with Ledger.open(args.db) as ledger:
            issuer = Issuer(
                ledger,
                length=args.length,
                alphabet=args.alphabet,
                policy=RetryPolicy(max_attempts=args.max_attempts),
            )

            if args.add_used:
                try:
                    code = issuer.record_used(args.add_used)
                    print(f"Recorded used code: {code}")
                except AlreadyRecordedError as e:
                    print(f"Code already recorded: {e.code}")

            for code in issuer.issue_batch(args.batch):
                path = render_qr_png(code.value, args.dir, args.size)
                print(f"\n✅ Generated code: {code}\n📁 Saved: {path}")

                if args.verify:
                    _verify(code.value, path)

                if not args.no_preview:
                    show_qr_terminal(code.value)

    except (Error, ValueError, OSError) as e:
        print(f"\n  ERROR: {e}", file=sys.stderr)
        return 1

    return 0


def _verify(code: str, path: str) -> None:
    from qr_code_issuer.errors import RenderError
    from qr_code_issuer.image_utils import VerifyResult, verify_qr_scannable

    result, decoded = verify_qr_scannable(path)
    if result == VerifyResult.SKIPPED:
        print("  ⊘ Verification skipped (pyzbar not installed)")
        print("    Install with: pip install pyzbar")
    elif result == VerifyResult.SCANNABLE and decoded == code:
        print("  ✓ QR code is SCANNABLE")
    else:
        raise RenderError(f"QR image {path} does not decode back to {code} (got {decoded!r})")


if __name__ == "__main__":
    sys.exit(main())
