"""
Command-line interface for dubbing a single audio file.
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import CONCURRENT_BRANCHES, DEFAULT_TARGET_LANGUAGE, REQUEST_TIMEOUT, WHISPER_MODEL
from .languages import supported_languages


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Replace the narration of an audio file with a translated voice, keeping the music",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m audio_dubber.cli --input narration.mp3 --tgt-lang es
  python -m audio_dubber.cli --input talk.wav --tgt-lang de --output talk_de.mp3 --sequential
        """
    )
    parser.add_argument("--input", "-i", help="Input audio file path")
    parser.add_argument("--output", "-o", help="Output MP3 path (default: <input>_<lang>.mp3)")
    parser.add_argument("--tgt-lang", default=DEFAULT_TARGET_LANGUAGE,
                        help=f"Target language code (default: {DEFAULT_TARGET_LANGUAGE})")
    parser.add_argument("--whisper-model", choices=["tiny", "base", "small", "medium", "large"],
                        default=WHISPER_MODEL, help=f"Whisper model size (default: {WHISPER_MODEL})")
    parser.add_argument("--sequential", action="store_true",
                        help="Extract the instrumental on the main thread instead of concurrently")
    parser.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT,
                        help="Abort if the run takes longer than this many seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--list-languages", action="store_true",
                        help="List supported target languages and exit")
    return parser


def default_output_path(input_path: Path, language: str) -> Path:
    return input_path.with_name(f"{input_path.stem}_{language}.mp3")


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.list_languages:
        print("Supported target languages:")
        for code in supported_languages():
            print(f"  {code}")
        return 0

    if not args.input:
        logger.error("Input file is required unless using --list-languages")
        return 1

    input_path = Path(args.input)
    if not input_path.exists():
        logger.error(f"Input file not found: {input_path}")
        return 1

    from .core.transcriber import WhisperTranscriber
    from .pipeline.orchestrator import DubbingPipeline, PipelineRequest

    pipeline = DubbingPipeline(
        transcriber=WhisperTranscriber(model_name=args.whisper_model),
        concurrent_branches=CONCURRENT_BRANCHES and not args.sequential,
    )
    request = PipelineRequest(
        audio=input_path.read_bytes(),
        target_language=args.tgt_lang,
        filename=input_path.name,
    )

    logger.info(f"Starting translation of {input_path} to '{args.tgt_lang}'...")
    result = pipeline.run(request, timeout=args.timeout)
    if not result.ok:
        logger.error(f"Audio translation failed: {result.error}")
        return 1

    output_path = Path(args.output) if args.output else default_output_path(input_path, args.tgt_lang)
    output_path.write_bytes(result.audio)
    logger.info(f"Audio translation completed: {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
