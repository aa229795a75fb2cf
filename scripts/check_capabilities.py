from __future__ import annotations

import argparse

import httpx
from rich.console import Console


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show what the AgeMe API and its upstream accept.")
    parser.add_argument(
        "--base-url",
        default="http://127.0.0.1:8000",
        help="API base URL (default: http://127.0.0.1:8000).",
    )
    parser.add_argument(
        "--probe",
        action="store_true",
        help="Run the live upstream round trip (may incur image generation cost).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    console = Console()

    params = {"probe": "1"} if args.probe else None
    try:
        response = httpx.get(f"{args.base_url.rstrip('/')}/api/capabilities", params=params, timeout=180.0)
    except httpx.HTTPError as exc:
        console.print(f"[red]Request failed:[/red] {exc}")
        raise SystemExit(1) from exc

    console.print_json(response.text)
    probe = response.json().get("probe", {})
    if probe.get("executed") and not probe.get("ok"):
        console.print(f"[yellow]Probe failed with HTTP {response.status_code}[/yellow]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
