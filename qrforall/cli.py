"""qrforall CLI: export styled QR codes, check contrast, mint tokens and run the server."""

import argparse
import sys
from pathlib import Path

from PIL import Image

from qrforall.errors import QRForAllError
from qrforall.logging import audit, get_logger, setup_logging

log = get_logger("cli")

SUFFIX_FORMATS = {".svg": "svg", ".png": "png", ".jpg": "jpeg", ".jpeg": "jpeg"}


def _options_from_args(args):
    from qrforall.options import Gradient, QROptions

    gradient = None
    if args.gradient:
        start, end = args.gradient
        gradient = Gradient(start, end, direction=args.gradient_direction)
    return QROptions(
        size=args.size,
        color=args.color,
        background=args.background,
        gradient=gradient,
        rounded=args.rounded,
        logo_scale=args.logo_scale,
        error_correction=args.ecc,
    )


def cmd_export(args):
    """Render content straight to a file."""
    from qrforall.pipeline import generate
    from qrforall.service import check_style

    output = Path(args.output)
    fmt = args.format or SUFFIX_FORMATS.get(output.suffix.lower(), "png")
    options = _options_from_args(args)
    if not args.skip_contrast:
        check_style(options, args.logo)

    result = generate(args.content, options, fmt, logo_url=args.logo)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(result.data)
    print(f"Exported: {output} ({result.size}x{result.size} {result.format.value}, {len(result.data)} bytes)")
    if args.logo and not result.logo_applied:
        print("  Logo skipped: logos are only composited into PNG and JPEG exports")


def cmd_contrast(args):
    """Report the WCAG contrast ratio between two colors."""
    from qrforall.contrast import MIN_CONTRAST_RATIO, validate_contrast

    result = validate_contrast(args.color, args.background)
    verdict = "PASS" if result.valid else "FAIL"
    print(f"{args.color} on {args.background}: {result.ratio:.2f}:1 [{verdict}] (minimum {MIN_CONTRAST_RATIO}:1)")
    sys.exit(0 if result.valid else 1)


def cmd_token(args):
    """Mint a slug, edit token and stored hash without persisting anything."""
    from qrforall.tokens import TokenManager

    creds = TokenManager().issue(lambda candidate: True)
    print(f"Slug:        {creds.slug}")
    print(f"Edit token:  {creds.edit_token}")
    print(f"Stored hash: {creds.stored_hash}")


def cmd_grid(args):
    """Write a color-coded map of the module regions."""
    from qrforall.encoder import Region, encode, render_region_map

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)

    grid = encode(args.content, args.ecc)
    render_region_map(grid, scale=args.scale).save(output)
    counts = grid.region_counts()

    print(f"QR Version {grid.version} ({grid.size}x{grid.size} = {grid.size * grid.size} modules), mask {grid.mask}")
    print(f"  Finder:    {counts[Region.FINDER]:4d} modules (red)")
    print(f"  Alignment: {counts[Region.ALIGNMENT]:4d} modules (blue)")
    print(f"  Timing:    {counts[Region.TIMING]:4d} modules (green)")
    print(f"  Format:    {counts[Region.FORMAT]:4d} modules (yellow)")
    print(f"  Version:   {counts[Region.VERSION]:4d} modules (purple)")
    print(f"  Data+ECC:  {counts[Region.DATA]:4d} modules (black/white)")
    print(f"Saved to: {output}")


def cmd_verify(args):
    """Decode a QR image and optionally compare it with the expected content."""
    from qrforall.verify import verify

    img = Image.open(args.image)
    r = verify(img, expected_data=args.expected)
    status = "PASS" if r.success else "FAIL"
    print(f"  [{r.decoder:8s}] {status} | {r.decode_time_ms:6.1f}ms | {r.decoded_data or r.error}")
    sys.exit(0 if r.success else 1)


def cmd_serve(args):
    """Start the HTTP server."""
    from dataclasses import replace

    from qrforall.config import Settings
    from qrforall.server import create_app
    from qrforall.service import QRCodeService
    from qrforall.store import QRCodeStore

    settings = Settings.from_env()
    overrides = {k: v for k, v in {"host": args.host, "port": args.port, "db_path": args.db}.items() if v is not None}
    settings = replace(settings, **overrides)

    service = QRCodeService(QRCodeStore(settings.db_path), settings=settings)
    app = create_app(service, settings)
    print(f"Starting server on http://{settings.host}:{settings.port}")
    print(f"Base URL: {settings.base_url}")
    app.run(host=settings.host, port=settings.port, debug=args.debug)


def main(argv=None):
    parser = argparse.ArgumentParser(prog="qrforall", description="QR for All: anonymous, styleable QR codes")

    # Global logging flags
    parser.add_argument("-V", "--verbose", action="store_true", help="Enable DEBUG-level logging")
    parser.add_argument("--log-file", default=None, help="Write JSON logs to file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- export ---
    p_exp = subparsers.add_parser("export", help="Render a styled QR code to a file")
    p_exp.add_argument("content", help="Text or URL to encode")
    p_exp.add_argument("-o", "--output", default="output/qr.png", help="Output file path")
    p_exp.add_argument("-f", "--format", default=None, choices=["svg", "png", "jpeg"],
                       help="Output format (from the file suffix if omitted)")
    p_exp.add_argument("-s", "--size", type=int, default=512, help="Edge in pixels, 128-4096")
    p_exp.add_argument("-e", "--ecc", default="H", choices=["L", "M", "Q", "H"], help="Error correction level")
    p_exp.add_argument("--color", default="#000000", help="Dark module color (#RRGGBB)")
    p_exp.add_argument("--background", default="#FFFFFF", help="Background color (#RRGGBB)")
    p_exp.add_argument("--gradient", nargs=2, metavar=("FROM", "TO"), default=None,
                       help="Gradient stops for dark modules")
    p_exp.add_argument("--gradient-direction", default="diagonal",
                       choices=["horizontal", "vertical", "diagonal", "anti-diagonal"])
    p_exp.add_argument("--rounded", action="store_true", help="Round data modules")
    p_exp.add_argument("--logo", default=None, help="Logo URL (PNG/JPEG only)")
    p_exp.add_argument("--logo-scale", type=float, default=0.2, help="Logo edge as a fraction of size")
    p_exp.add_argument("--skip-contrast", action="store_true", help="Do not enforce the contrast minimum")

    # --- contrast ---
    p_con = subparsers.add_parser("contrast", help="Check WCAG contrast between two colors")
    p_con.add_argument("color", help="Foreground color (#RRGGBB)")
    p_con.add_argument("background", help="Background color (#RRGGBB)")

    # --- token ---
    subparsers.add_parser("token", help="Mint a slug and edit token")

    # --- grid ---
    p_grid = subparsers.add_parser("grid", help="Generate a color-coded module region map")
    p_grid.add_argument("content", help="Text or URL to encode")
    p_grid.add_argument("-o", "--output", default="output/grid.png", help="Output file path")
    p_grid.add_argument("-e", "--ecc", default="H", choices=["L", "M", "Q", "H"])
    p_grid.add_argument("--scale", type=int, default=20, help="Pixels per module")

    # --- verify ---
    p_ver = subparsers.add_parser("verify", help="Decode a QR code image")
    p_ver.add_argument("image", help="Path to QR code image")
    p_ver.add_argument("--expected", default=None, help="Expected decoded data (fails if mismatch)")

    # --- serve ---
    p_serve = subparsers.add_parser("serve", help="Start the HTTP server")
    p_serve.add_argument("--host", default=None, help="Bind address (HOST)")
    p_serve.add_argument("--port", type=int, default=None, help="Port to listen on (PORT)")
    p_serve.add_argument("--db", default=None, help="JSON store path (QR_DB_PATH)")
    p_serve.add_argument("--debug", action="store_true", help="Enable debug mode")

    args = parser.parse_args(argv)

    # Setup logging before any command runs
    level = "DEBUG" if args.verbose else "INFO"
    setup_logging(level=level, log_file=args.log_file)
    audit("cli.start", logger=log, command=args.command, verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "export": cmd_export,
        "contrast": cmd_contrast,
        "token": cmd_token,
        "grid": cmd_grid,
        "verify": cmd_verify,
        "serve": cmd_serve,
    }
    try:
        commands[args.command](args)
    except QRForAllError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        sys.exit(2)
    audit("cli.done", logger=log, command=args.command)


if __name__ == "__main__":
    main()
