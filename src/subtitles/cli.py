# src/subtitles/cli.py
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import aiohttp
from dotenv import load_dotenv
from pydantic import ValidationError

from src.ai.content_oracle import ContentOracleError, create_content_oracle
from src.subtitles.manifest import (
    build_post_process_manifest,
    build_qa_report,
    build_track_attach_metadata,
)
from src.subtitles.models import PostProcessOutput, SubtitleSegment
from src.subtitles.pipeline import SubtitlePostProcessor, SubtitleValidationFailure
from src.subtitles.post_process_config import (
    DEFAULT_CONFIG_PATH,
    PostProcessConfig,
    get_language_allowlist,
    load_post_process_config,
)
from src.subtitles.track_batch import (
    NoEligibleTracksError,
    SubtitleTrackRequest,
    process_subtitle_tracks,
)
from src.utils import ensure_dirs_exist, sanitize_filename, write_text_atomic
from src.utils.caching import create_output_store
from src.utils.circuit_breaker import CircuitBreakerError
from src.utils.connection_pool import close_global_pool

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "subtitle_post_process.log"
MANIFEST_FILE_NAME = "subtitle-post-process-manifest.json"


def setup_logging(output_dir: Path, debug_mode: bool = False) -> Path:
    """Set up logging to both console and file.

    Args:
    ----
        output_dir: Directory that receives the log file
        debug_mode: Whether to enable debug logging

    Returns:
    -------
        Path to the log file

    """
    log_level = logging.DEBUG if debug_mode else logging.INFO
    ensure_dirs_exist(output_dir)
    log_file = output_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    console_handler.setLevel(log_level)

    # Overwritten on each run
    file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
        )
    )
    file_handler.setLevel(log_level)

    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    if not debug_mode:
        for lib in ["aiohttp", "asyncio"]:
            logging.getLogger(lib).setLevel(logging.WARNING)

    logger.info(
        f"Logging configured - Level: {logging.getLevelName(log_level)}, "
        f"File: {log_file}"
    )
    return log_file


def load_segments(path: Path) -> list[SubtitleSegment]:
    """Read a JSON list of ``{id, start, end, text}`` objects.

    Raises
    ------
        ValueError: If the file is not a JSON list of valid segments

    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON list of segments in {path}")
    return [SubtitleSegment.model_validate(item) for item in data]


def write_outputs(
    output_dir: Path, asset_id: str, output: PostProcessOutput
) -> list[Path]:
    language = sanitize_filename(output.language_tag)
    vtt_path = output_dir / f"subtitles.{language}.vtt"
    qa_path = output_dir / f"subtitle-qa.{language}.json"
    manifest_path = output_dir / MANIFEST_FILE_NAME

    manifest = build_post_process_manifest(asset_id, [output])
    manifest["track_attachments"] = [build_track_attach_metadata(output)]

    write_text_atomic(vtt_path, output.vtt)
    write_text_atomic(
        qa_path, json.dumps(build_qa_report(output), ensure_ascii=False, indent=2)
    )
    write_text_atomic(manifest_path, json.dumps(manifest, ensure_ascii=False, indent=2))
    return [vtt_path, qa_path, manifest_path]


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Post-process speech-to-text segments into a validated WebVTT track."
    )
    parser.add_argument(
        "segments_file",
        type=Path,
        help="Path to JSON list of {id, start, end, text} segments.",
    )
    parser.add_argument("--asset-id", required=True, help="Asset identifier.")
    parser.add_argument(
        "--language", required=True, help="BCP-47 language tag, e.g. en or zh-Hans."
    )
    parser.add_argument(
        "--origin",
        default="ai-raw",
        help="Subtitle origin (ai-raw, ai-processed, ai-human, human).",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("outputs") / "subtitles",
        help="Directory for the VTT, QA report, manifest and log.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to the post-process YAML config.",
    )
    parser.add_argument(
        "--oracle",
        choices=["deterministic", "openrouter"],
        help="Override the configured content oracle provider.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode.")
    args = parser.parse_args(argv)

    project_root = Path(__file__).resolve().parent.parent.parent
    load_dotenv(project_root / ".env")

    log_file = setup_logging(args.output_dir, args.debug)
    logger.info(f"Subtitle post-process started - Log file: {log_file}")

    try:
        config: PostProcessConfig = load_post_process_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        logger.critical(f"Config loading failed: {e}")
        return 1

    oracle_settings = config.oracle_settings
    if args.oracle:
        oracle_settings = oracle_settings.model_copy(update={"provider": args.oracle})

    try:
        segments = load_segments(args.segments_file)
    except (OSError, ValueError, ValidationError) as e:
        logger.error(f"Could not read segments from {args.segments_file}: {e}")
        return 1

    try:
        oracle = create_content_oracle(oracle_settings)
    except (ContentOracleError, FileNotFoundError) as e:
        logger.error(f"Content oracle unavailable: {e}")
        return 1

    processor = SubtitlePostProcessor(oracle, create_output_store(config.cache_settings))
    track = SubtitleTrackRequest(
        language_tag=args.language, segments=segments, origin=args.origin
    )
    allowlist = get_language_allowlist(config.language_allowlist)

    try:
        batch = await process_subtitle_tracks(
            processor, args.asset_id, [track], allowlist
        )
    except NoEligibleTracksError as e:
        logger.error(str(e))
        return 1
    except SubtitleValidationFailure as e:
        logger.error(str(e))
        return 1
    except (
        ContentOracleError,
        CircuitBreakerError,
        aiohttp.ClientError,
        asyncio.TimeoutError,
    ) as e:
        logger.error(f"Content oracle failed: {e}")
        return 1
    finally:
        await close_global_pool()

    output = batch.outputs[0]
    for path in write_outputs(args.output_dir, args.asset_id, output):
        logger.info(f"Wrote {path}")

    logger.info(
        f"Subtitle post-process completed - cache_hit={output.cache_hit}, "
        f"skipped={output.skipped}, fallback={output.used_fallback}"
    )
    for handler in logging.getLogger().handlers:
        handler.flush()
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
