"""
Command-line interface for the language-model steganography library.
"""

import logging
import sys
from typing import Optional

import click

from .config import ConversionMode, SteganographyConfig, SteganographyMode
from .openai_oracle import OpenAIOracle
from .steganography import Steganography


def main():
    """Main CLI entry point."""
    cli()


@click.group()
@click.option("--api-key", help="OpenAI API key (overrides OPENAI_API_KEY env var)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in SteganographyMode]),
    default=SteganographyMode.ARITHMETIC.value,
    show_default=True,
    help="Steganographic codec",
)
@click.option(
    "--conversion",
    type=click.Choice([m.value for m in ConversionMode]),
    default=ConversionMode.UTF8.value,
    show_default=True,
    help="How the secret message is turned into bytes (arithmetic needs a model exposing its full distribution)",
)
@click.pass_context
def cli(ctx, api_key: Optional[str], verbose: bool, mode: str, conversion: str):
    """Language-model steganography CLI tool."""
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    ctx.obj["config"] = SteganographyConfig(steganography_mode=mode, conversion_mode=conversion)

    # Set root logger to WARNING to suppress most third-party noise
    logging.basicConfig(
        level=logging.WARNING,
        format="[%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    app_logger = logging.getLogger("stego_lm_coding")
    app_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    third_party_level = logging.WARNING if verbose else logging.ERROR
    for name in ("openai", "httpx", "httpcore", "urllib3"):
        logging.getLogger(name).setLevel(third_party_level)


def _steganography(ctx) -> Steganography:
    config = ctx.obj["config"]
    oracle = OpenAIOracle(config=config, openai_api_key=ctx.obj["api_key"])
    return Steganography(oracle, config)


@cli.command()
@click.argument("context")
@click.argument("message")
@click.pass_context
def encode(ctx, context: str, message: str):
    """Hide a message in a continuation of a context.

    CONTEXT: The text the cover text continues
    MESSAGE: The secret message to hide
    """
    try:
        cover_text = _steganography(ctx).encode(context, message)
        click.echo(f"Encoded text: {repr(cover_text)}")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("context")
@click.argument("cover_text", required=False)
@click.option(
    "--input",
    "-i",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="Read the cover text from a file",
)
@click.pass_context
def decode(ctx, context: str, cover_text: Optional[str], input_path: Optional[str]):
    """Recover a message hidden in a cover text.

    CONTEXT: The context that was used during encoding
    COVER_TEXT: The cover text containing the hidden message (or use --input)
    """
    if not cover_text and not input_path:
        click.echo("Error: must provide COVER_TEXT or --input", err=True)
        sys.exit(2)
    try:
        if input_path:
            with open(input_path, "r", encoding="utf-8") as f:
                cover_text = f.read()
        message = _steganography(ctx).decode(context, cover_text)
        click.echo(f"Decoded text: {repr(message)}")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("text")
@click.pass_context
def compress(ctx, text: str):
    """Compress text with the language model, printed as hex."""
    try:
        data = _steganography(ctx).arithmetic.compress(text)
        click.echo(data.hex())
        click.echo(f"Length: {len(data)} bytes (text: {len(text.encode('utf-8'))} bytes)", err=True)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("hex_data")
@click.pass_context
def decompress(ctx, hex_data: str):
    """Decompress hex output of the compress command."""
    try:
        text = _steganography(ctx).arithmetic.decompress(bytes.fromhex(hex_data))
        click.echo(f"Text: {repr(text)}")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
