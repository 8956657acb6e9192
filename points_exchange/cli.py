"""
Command-line client for the points backend.

Usage:
    points-exchange login alice                       # prompts for the password
    points-exchange balance
    points-exchange records --type spent --range 3months
    points-exchange products
    points-exchange exchange <product-id> --quantity 2
    points-exchange admin login admin
    points-exchange admin products
    points-exchange admin stock <product-id> 50
    points-exchange admin exchanges --status SUCCESS

Credentials are kept in POINTS_TOKEN_FILE between invocations.
"""

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from pydantic import ValidationError

from points_exchange.api import AdminApi, ApiClient, AuthApi, PointsApi, ProductApi, build_admin_client
from points_exchange.config import Settings, load_settings
from points_exchange.exceptions import (
    AuthenticationError,
    FlowError,
    IneligibleProduct,
    InvalidQuantity,
    InvalidRequest,
    PointsExchangeError,
)
from points_exchange.exchange import ExchangeFlowController
from points_exchange.models import Product, ProductDraft
from points_exchange.notifications import Notification, Notifier
from points_exchange.observability import render_metrics, setup_logging
from points_exchange.services import HttpCatalogService, HttpExchangeService
from points_exchange.session import EntryRedirect, FileTokenStore, Session, TokenStore

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 3

Prompt = Callable[[str], str]


class ConsoleNotifier(Notifier):
    PREFIXES = {"success": "✓", "info": "i", "warning": "!", "error": "✗"}

    def __init__(self, stream=None):
        super().__init__()
        self.stream = stream

    def deliver(self, notification: Notification) -> None:
        stream = self.stream or (sys.stderr if notification.level in ("warning", "error") else sys.stdout)
        print(f"{self.PREFIXES[notification.level]}  {notification}", file=stream)


class CliContext:
    """Everything a command needs, built once per invocation."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[TokenStore] = None,
        notifier: Optional[Notifier] = None,
        prompt: Prompt = input,
        transport=None,
    ):
        self.settings = settings
        self.store = store or FileTokenStore(settings.token_file)
        self.notifier = notifier or ConsoleNotifier()
        self.prompt = prompt
        self.transport = transport
        self.at_login = False

    def user_client(self) -> ApiClient:
        return self._watch(ApiClient(self.settings, Session(self.store), transport=self.transport))

    def admin_client(self) -> ApiClient:
        return self._watch(build_admin_client(self.settings, self.store, transport=self.transport))

    def _watch(self, client: ApiClient) -> ApiClient:
        EntryRedirect(
            client.session,
            self.notifier,
            navigate=self._point_to_login,
            at_entry=lambda: self.at_login,
        )
        return client

    def _point_to_login(self) -> None:
        self.notifier.info("Please log in again", "Run `points-exchange login <username>`")


# ----------------------------------------------------------------------
# Output helpers
# ----------------------------------------------------------------------

def _print_products(products: Sequence[Product], *, admin: bool = False) -> None:
    if not products:
        print("No products.")
        return
    for p in products:
        line = (
            f"{p.id:<38} {p.name:<24} {p.points:>6} pts  stock {p.stock:>4}  "
            f"month {p.used_this_month}/{p.monthly_limit}"
        )
        if admin:
            line += "  on shelf" if p.status == 1 else "  off shelf"
        elif not p.exchangeable:
            line += "  (unavailable)"
        print(line)


# ----------------------------------------------------------------------
# End-user commands
# ----------------------------------------------------------------------

async def cmd_login(args: argparse.Namespace, ctx: CliContext) -> int:
    ctx.at_login = True
    client = ctx.admin_client() if args.admin else ctx.user_client()
    async with client:
        password = args.password or getpass.getpass("Password: ")
        result = await AuthApi(client).login(args.username, password)
    name = result.user_info.nickname or result.user_info.username if result.user_info else args.username
    ctx.notifier.success("Logged in", f"Welcome, {name}")
    return 0


async def cmd_logout(args: argparse.Namespace, ctx: CliContext) -> int:
    client = ctx.admin_client() if args.admin else ctx.user_client()
    async with client:
        AuthApi(client).logout()
    ctx.notifier.info("Logged out")
    return 0


async def cmd_balance(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.user_client() as client:
        balance = await PointsApi(client).get_balance()
    print(balance)
    return 0


async def cmd_records(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.user_client() as client:
        records = await PointsApi(client).get_records(args.type, args.range)
    if not records:
        print("No records.")
    for r in records:
        sign = "+" if r.type == "earn" else ""
        print(f"{r.date or '':<20} {sign}{r.points:>7}  {r.description}")
    return 0


async def cmd_products(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.user_client() as client:
        products = await ProductApi(client).list_products()
    _print_products(products)
    return 0


async def cmd_exchange(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.user_client() as client:
        controller = ExchangeFlowController(
            HttpCatalogService(client),
            HttpExchangeService(client, echo_code=ctx.settings.echo_verification_code),
            notifier=ctx.notifier,
            countdown_seconds=ctx.settings.countdown_seconds,
        )
        async with controller:
            await controller.refresh()
            product = controller.find_product(args.product_id)
            if product is None:
                ctx.notifier.error("Product not found", args.product_id)
                return 1

            try:
                controller.select_product(product)
                controller.set_quantity(args.quantity)
            except (IneligibleProduct, InvalidQuantity) as e:
                ctx.notifier.error("Cannot exchange", e.message)
                raise
            controller.request_exchange()
            print(f"{product.name} x{args.quantity}: {controller.required_points} of {controller.balance} points")

            code = args.code
            if not code:
                await controller.send_verification_code()

            for _ in range(MAX_CODE_ATTEMPTS):
                while not code or not code.strip():
                    code = await asyncio.to_thread(ctx.prompt, "Verification code: ")
                controller.set_verification_code(code)
                outcome = await controller.submit_exchange()
                if outcome.success:
                    print(f"Balance: {controller.balance}")
                    return 0
                if not outcome.error.verification_scoped:
                    return 1
                ctx.notifier.error("Verification code error", controller.verification.last_error)
                code = None
    return 1


# ----------------------------------------------------------------------
# Admin commands
# ----------------------------------------------------------------------

def _draft_from_args(args: argparse.Namespace) -> ProductDraft:
    try:
        return ProductDraft(
            name=args.name,
            description=args.description,
            image=args.image,
            points=args.points,
            stock=args.stock,
            monthly_limit=args.monthly_limit,
            status=args.status,
        )
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidRequest(f"Invalid product fields: {problems}") from e


async def cmd_admin_products(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.admin_client() as client:
        products = await AdminApi(client).list_all_products()
    _print_products(products, admin=True)
    return 0


async def cmd_admin_create(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.admin_client() as client:
        product = await AdminApi(client).create_product(_draft_from_args(args))
    ctx.notifier.success("Product created", f"{product.name} ({product.id})")
    return 0


async def cmd_admin_update(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.admin_client() as client:
        product = await AdminApi(client).update_product(args.product_id, _draft_from_args(args))
    ctx.notifier.success("Product updated", product.name)
    return 0


async def cmd_admin_stock(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.admin_client() as client:
        product = await AdminApi(client).update_stock(args.product_id, args.stock)
    ctx.notifier.success("Stock updated", f"{product.name}: {product.stock}")
    return 0


async def cmd_admin_status(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.admin_client() as client:
        product = await AdminApi(client).update_status(args.product_id, args.status)
    ctx.notifier.success("Status updated", f"{product.name}: {'on' if product.status == 1 else 'off'} shelf")
    return 0


async def cmd_admin_exchanges(args: argparse.Namespace, ctx: CliContext) -> int:
    async with ctx.admin_client() as client:
        records = await AdminApi(client).list_exchange_records(
            user_id=args.user_id, product_id=args.product_id, status=args.status,
        )
    if not records:
        print("No exchange records.")
    for r in records:
        who = r.nickname or r.username or r.user_id
        print(
            f"{r.created_at:<20} {who:<16} {r.phone or '-':<12} "
            f"{r.product_name or r.product_id:<24} x{r.quantity:<3} {r.points:>6} pts  "
            f"{r.status}  {r.coupon_code or ''}"
        )
    return 0


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------

def _add_product_fields(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required)
    parser.add_argument("--points", type=int, required=required)
    parser.add_argument("--stock", type=int, required=required)
    parser.add_argument("--monthly-limit", type=int, required=required)
    parser.add_argument("--description")
    parser.add_argument("--image")
    parser.add_argument("--status", type=int, choices=[0, 1])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="points-exchange", description=__doc__.split("\n\n")[0].strip())
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    parser.add_argument("--metrics-file", type=Path, help="Write Prometheus metrics here after the command")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Log in and remember the token")
    p.add_argument("username")
    p.add_argument("--password")
    p.set_defaults(handler=cmd_login, admin=False)

    p = sub.add_parser("logout", help="Forget the stored token")
    p.set_defaults(handler=cmd_logout, admin=False)

    p = sub.add_parser("balance", help="Show the points balance")
    p.set_defaults(handler=cmd_balance)

    p = sub.add_parser("records", help="List points history")
    p.add_argument("--type", choices=["all", "earned", "spent"], default="all")
    p.add_argument("--range", choices=["30days", "3months", "12months", "2years"], default="30days")
    p.set_defaults(handler=cmd_records)

    p = sub.add_parser("products", help="List exchangeable products")
    p.set_defaults(handler=cmd_products)

    p = sub.add_parser("exchange", help="Exchange points for a product coupon")
    p.add_argument("product_id")
    p.add_argument("--quantity", type=int, default=1)
    p.add_argument("--code", help="Verification code you already received")
    p.set_defaults(handler=cmd_exchange)

    admin = sub.add_parser("admin", help="Admin console").add_subparsers(dest="admin_command", required=True)

    p = admin.add_parser("login")
    p.add_argument("username")
    p.add_argument("--password")
    p.set_defaults(handler=cmd_login, admin=True)

    p = admin.add_parser("logout")
    p.set_defaults(handler=cmd_logout, admin=True)

    p = admin.add_parser("products", help="List all products, including off-shelf ones")
    p.set_defaults(handler=cmd_admin_products)

    p = admin.add_parser("create", help="Create a product")
    _add_product_fields(p, required=True)
    p.set_defaults(handler=cmd_admin_create)

    p = admin.add_parser("update", help="Update product fields")
    p.add_argument("product_id")
    _add_product_fields(p, required=False)
    p.set_defaults(handler=cmd_admin_update)

    p = admin.add_parser("stock", help="Set product stock")
    p.add_argument("product_id")
    p.add_argument("stock", type=int)
    p.set_defaults(handler=cmd_admin_stock)

    p = admin.add_parser("status", help="Put a product on (1) or off (0) the shelf")
    p.add_argument("product_id")
    p.add_argument("status", type=int, choices=[0, 1])
    p.set_defaults(handler=cmd_admin_status)

    p = admin.add_parser("exchanges", help="List exchange records")
    p.add_argument("--user-id")
    p.add_argument("--product-id")
    p.add_argument("--status")
    p.set_defaults(handler=cmd_admin_exchanges)

    return parser


async def run(args: argparse.Namespace, ctx: CliContext) -> int:
    try:
        return await args.handler(args, ctx)
    except AuthenticationError:
        # EntryRedirect has already told the user what to do
        return 2
    except FlowError as e:
        # Reported through the notifier (or at the code input) already
        logger.info(f"[cli] {args.command} stopped: {e.to_dict()}")
        return 1
    except PointsExchangeError as e:
        logger.warning(f"[cli] {args.command} failed: {e.to_dict()}")
        ctx.notifier.error("Request failed", e.message)
        return 1


def write_metrics(path: Path) -> None:
    """Dump counters for a node-exporter textfile collector."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(render_metrics())
    tmp.replace(path)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    ctx = CliContext(load_settings())
    try:
        return asyncio.run(run(args, ctx))
    except KeyboardInterrupt:
        return 130
    finally:
        if args.metrics_file:
            write_metrics(args.metrics_file)


if __name__ == "__main__":
    sys.exit(main())
