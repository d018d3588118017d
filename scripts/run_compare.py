#!/usr/bin/env python3
"""
Manual execution script for cart comparison.

Usage:
    python scripts/run_compare.py --cart cart.json                 # Cart file
    python scripts/run_compare.py --product "Widget:100:1" \\
        --product "Gadget:50:2" --hostname shop.co.za               # Inline cart
    python scripts/run_compare.py --cart cart.json --json          # JSON output
    python scripts/run_compare.py --cart cart.json --verbose       # Debug logging

The cart file holds either a list of products or a full request body
(``{"cartProducts": [...], "hostname": "..."}``).
"""

import argparse
import asyncio
import json
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

import structlog

from cartcompare.api import build_orchestrator
from cartcompare.config import load_config
from cartcompare.errors import ConfigurationError
from cartcompare.logging_config import configure_logging
from cartcompare.models import CartProduct, ComparisonRequest


def parse_product(value: str) -> Dict[str, Any]:
    """Parse ``NAME:PRICE[:QTY]``; the name may itself contain colons."""
    parts = value.rsplit(":", 2)
    if len(parts) == 3 and parts[2].isdigit():
        try:
            return {"productName": parts[0], "price": Decimal(parts[1]), "quantity": int(parts[2])}
        except InvalidOperation:
            pass

    name, _, price = value.rpartition(":")
    try:
        return {"productName": name, "price": Decimal(price), "quantity": 1}
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"expected NAME:PRICE[:QTY], got {value!r}") from None


def load_request(args) -> ComparisonRequest:
    products: List[Dict[str, Any]] = list(args.product or [])
    hostname = args.hostname or ""

    if args.cart:
        with open(args.cart, "r") as f:
            data = json.load(f)
        if isinstance(data, dict):
            products.extend(data.get("cartProducts", []))
            hostname = hostname or data.get("hostname", "")
        else:
            products.extend(data)

    return ComparisonRequest(cart_products=products, hostname=hostname)


def print_summary(result) -> None:
    original_total = result.original_cart.get_total_price()

    print("\n" + "=" * 70)
    print("Cart Comparison Summary")
    print("=" * 70)
    print(f"Original total:    {original_total:.2f}")
    print(f"Candidate sites:   {result.candidates}")
    print(f"Sites attempted:   {result.attempts}")
    print(f"Alternatives:      {len(result.alternative_carts)}")
    print(f"Duration:          {result.duration_seconds:.2f}s")
    print("=" * 70)

    for cart in result.alternative_carts:
        print(f"\n{cart.site_url}: {cart.get_total_price():.2f} (save {cart.get_potential_savings():.2f})")
        for original, product in zip(cart.original_products, cart.products):
            print(f"  - {original.product_name} x{product.quantity} -> {product.product_name} @ {product.price:.2f}")
            if product.url:
                print(f"      {product.url}")


async def main():
    """Main execution function."""
    parser = argparse.ArgumentParser(description="cartcompare - Find the cart cheaper elsewhere")
    parser.add_argument(
        "--cart",
        help="Path to a cart JSON file",
    )
    parser.add_argument(
        "--product",
        action="append",
        type=parse_product,
        metavar="NAME:PRICE[:QTY]",
        help="Cart product (repeatable)",
    )
    parser.add_argument(
        "--hostname",
        help="Site the cart came from (excluded from results)",
    )
    parser.add_argument(
        "--config",
        help="Path to config file (default: cartcompare/config/settings.yaml)",
    )
    parser.add_argument(
        "--max-results",
        type=int,
        help="Override the number of alternative carts wanted",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON",
    )
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        help="Log output format (default from config)",
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)

    logging_cfg = config.get("logging", {})
    configure_logging(
        "DEBUG" if args.verbose else logging_cfg.get("level", "INFO"),
        args.log_format or logging_cfg.get("format", "console"),
    )
    logger = structlog.get_logger()

    if args.max_results is not None:
        config.setdefault("comparison", {})["max_results"] = args.max_results

    try:
        request = load_request(args)
    except (OSError, ValueError) as e:
        logger.error("cart_load_failed", error=str(e))
        sys.exit(2)

    try:
        orchestrator = build_orchestrator(config)
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e), missing=e.missing)
        sys.exit(1)

    try:
        result = await orchestrator.compare(request.cart_products, request.hostname)
    except KeyboardInterrupt:
        logger.info("interrupted_by_user")
        sys.exit(130)
    except Exception as e:
        logger.error("comparison_failed", error=str(e), exc_info=True)
        sys.exit(1)
    finally:
        await orchestrator.close()

    if args.json:
        print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    else:
        print_summary(result)


if __name__ == "__main__":
    asyncio.run(main())
