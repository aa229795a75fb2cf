from __future__ import annotations

import argparse
import json
import mimetypes
from pathlib import Path

from rich.console import Console

from ageme.config import load_client_config
from ageme.errors import InvalidInputError
from ageme.log import configure_logging
from ageme.params import GLASSES_OPTIONS, HAIR_COLORS, QUALITY_OPTIONS
from ageme.session import AgeFaceSession, ClientState, attach_mask, build_params, load_photo, save_result
from ageme.types import UploadPayload


def _existing_path(value: str) -> Path:
    path = Path(value).expanduser()
    if not path.exists():
        raise argparse.ArgumentTypeError(f"Path not found: {path}")
    return path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Prepare a portrait, send it to the AgeMe API and save the edited image."
    )
    parser.add_argument("photo", type=_existing_path, help="Portrait photo to edit.")
    parser.add_argument("--api-url", default=None, help="Override AGEME_API_URL.")
    parser.add_argument("--age-delta", type=int, default=10, help="Years to add, negative for younger (-40..40).")
    parser.add_argument("--intensity", type=float, default=0.5, help="Edit intensity (0..1).")
    parser.add_argument("--hair-color", choices=HAIR_COLORS, default="preserve")
    parser.add_argument("--glasses", choices=GLASSES_OPTIONS, default="preserve")
    parser.add_argument("--baldness", type=float, default=0, help="Baldness level (0..100).")
    parser.add_argument("--blemish-fix", type=float, default=0, help="Blemish correction level (0..100).")
    parser.add_argument("--skin-texture", type=float, default=0, help="Skin texture shift (-100..100).")
    parser.add_argument("--quality", choices=QUALITY_OPTIONS, default="medium")
    parser.add_argument(
        "--no-preserve-identity",
        action="store_true",
        help="Allow moderate identity changes.",
    )
    parser.add_argument(
        "--mask-policy",
        choices=("regions", "full", "none"),
        default=None,
        help="Override the mask policy (default from AGEME_CLIENT_MASK).",
    )
    parser.add_argument("--debug", action="store_true", help="Request and print the debug echo.")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="Directory for the generated image (default: output).",
    )
    parser.add_argument(
        "--dotenv",
        type=Path,
        default=None,
        help="Optional path to a .env file containing AGEME_* client settings.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    console = Console()
    configure_logging("WARNING")

    config = load_client_config(args.dotenv)
    overrides: dict[str, object] = {}
    if args.api_url:
        overrides["api_url"] = args.api_url
    if args.mask_policy:
        overrides["mask_policy"] = args.mask_policy
    if args.debug:
        overrides["debug"] = True
    config = config.model_copy(update=overrides)

    content_type = mimetypes.guess_type(args.photo.name)[0] or "application/octet-stream"
    photo = UploadPayload(data=args.photo.read_bytes(), content_type=content_type, filename=args.photo.name)

    console.print("Preparing image for generation...")
    state = load_photo(ClientState(), photo, config)
    console.print(state.status)
    if state.upload is None:
        raise SystemExit(1)

    params = build_params(
        {
            "age_delta": args.age_delta,
            "intensity": args.intensity,
            "hair_color": args.hair_color,
            "glasses": args.glasses,
            "baldness": args.baldness,
            "blemish_fix": args.blemish_fix,
            "skin_texture": args.skin_texture,
            "quality": args.quality,
            "preserve_identity": not args.no_preserve_identity,
        }
    )
    try:
        state = attach_mask(state, params, config)
    except InvalidInputError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise SystemExit(1) from exc

    with console.status("Generating image..."), AgeFaceSession(config) as session:
        state = session.generate(state, params)

    if state.last_debug is not None:
        console.print_json(json.dumps(state.last_debug))

    if not state.after_data_url:
        console.print(f"[red]{state.status}[/red]")
        raise SystemExit(1)

    path = save_result(state, args.output_dir)
    console.print(f"[green]{state.status}[/green] Saved to {path}")


if __name__ == "__main__":
    main()
