"""
Command-Line Interface for tts-relay.

Operator tooling without running the HTTP server: engine and voice
inspection, language detection, profanity filter preview, and one-shot
synthesis through the fallback dispatcher.

Usage Examples:
    # Engines and availability
    tts-relay --engines

    # Voice catalog for one engine
    tts-relay --voices google --json

    # Language detection and the voice it maps to
    tts-relay --detect "Bonjour tout le monde, comment allez-vous?"

    # Profanity filter preview (mode from settings unless overridden)
    tts-relay --filter "well shit happens" --mode moderate

    # Synthesize through the fallback chain and save the audio
    tts-relay "Hello chat" --engine speechify --out hello.mp3

    # Dry-run: resolve engine, voice and chain without provider calls
    tts-relay "Hello chat" --dry-run --json

Environment Variables:
    TTS_RELAY_CONFIG: Settings file (default config/settings.yaml)
    SPEECHIFY_API_KEY / ELEVENLABS_API_KEY / GOOGLE_TTS_API_KEY / TIKTOK_SESSION_ID
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from tts_relay.core.config import PROFANITY_MODES, Settings, load_settings
from tts_relay.core.errors import AggregateFailure, RelayError
from tts_relay.core.logging import configure_logging, get_logger, info, set_request_id
from tts_relay.services.store import InMemoryStore
from tts_relay.tts.dispatcher import SpeakContext


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="tts-relay CLI")

    parser.add_argument("text_pos", nargs="?", help="Text to synthesize (positional)")
    parser.add_argument("--text", help="Text to synthesize")
    parser.add_argument("--out", help="Output audio path (default out.mp3)")
    parser.add_argument("--engine", help="Engine override")
    parser.add_argument("--voice", help="Voice override")
    parser.add_argument("--config", help="Settings file (default: TTS_RELAY_CONFIG or config/settings.yaml)")

    parser.add_argument("--engines", action="store_true", help="Show engines and availability")
    parser.add_argument("--voices", metavar="ENGINE", help="Show the voice catalog of ENGINE")
    parser.add_argument("--detect", metavar="TEXT", help="Detect language and mapped voice")
    parser.add_argument("--filter", metavar="TEXT", help="Run the profanity filter on TEXT")
    parser.add_argument("--mode", choices=PROFANITY_MODES, help="Profanity mode override for --filter")

    parser.add_argument("--dry-run", action="store_true", help="Resolve engine/voice without synthesis")
    parser.add_argument("--json", action="store_true", help="Print JSON output")

    return parser.parse_args(argv)


def _load_settings(path: Optional[str]) -> Settings:
    path = path or os.getenv("TTS_RELAY_CONFIG", "config/settings.yaml")
    if not Path(path).exists():
        return Settings(raw={})
    return load_settings(path)


def _emit(payload: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
        return
    for key, value in payload.items():
        print(f"{key}: {value}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, 1 for errors, 2 when every engine failed).
    """
    args = _parse_args(argv)

    configure_logging()
    log = get_logger("tts-relay.cli")
    set_request_id(uuid4().hex[:12])

    from tts_relay.services.relay_service import RelayService

    # CLI runs never touch the persisted store
    service = RelayService(_load_settings(args.config), store=InMemoryStore())

    if args.engines:
        engines = service.registry.describe()
        if args.json:
            print(json.dumps({"ok": True, "engines": engines}, ensure_ascii=False))
        else:
            for e in engines:
                status = "OK" if e["available"] else "--"
                print(f"[{status}] {e['id']:<11} {e['name']:<12} voices={e['voice_count']} "
                      f"default={e['default_voice']}")
        return 0

    if args.voices:
        try:
            catalog = service.voices(args.voices)
        except RelayError as e:
            print(e.message)
            return 1
        if args.json:
            print(json.dumps(catalog, ensure_ascii=False))
        else:
            for voice in catalog[args.voices]["voices"]:
                print(f"{voice['id']:<28} {voice['lang']:<4} {voice['gender']:<8} {voice['label']}")
        return 0

    if args.detect:
        try:
            result = service.detect_language(args.detect, args.engine)
        except RelayError as e:
            print(e.message)
            return 1
        _emit(result, args.json)
        return 0

    if args.filter:
        if args.mode:
            service.profanity.set_mode(args.mode)
        detected = service.detector.detect(args.filter)
        result = service.profanity.filter(args.filter, detected.lang_code if detected.detected else None)
        _emit(result.to_dict(), args.json)
        return 0

    text = args.text or args.text_pos
    if not text:
        raise SystemExit("Provide --text or a positional text.")

    if args.dry_run:
        primary = service.dispatcher.resolve_primary(SpeakContext(desired_engine_id=args.engine))
        adapter = service.registry[primary]
        chain = service.dispatcher.chain_for(primary)
        payload = {
            "ok": True,
            "dry_run": True,
            "engine": primary,
            "voice": service.dispatcher.resolve_voice(adapter, text, args.voice),
            "chain": chain,
            "available": [e for e in chain if service.registry.get(e).available()],
            "chars": len(text),
        }
        if args.json:
            print(json.dumps(payload, ensure_ascii=False))
        else:
            info(log, "dry_run", engine=primary, chain=",".join(chain))
            print(payload)
        print("DRY_RUN_OK")
        return 0

    async def _run():
        try:
            return await service.speak_now(text, args.engine, args.voice)
        finally:
            await service.registry.aclose()

    try:
        result = asyncio.run(_run())
    except AggregateFailure as e:
        _emit(e.to_dict(), args.json)
        return 2
    except RelayError as e:
        _emit(e.to_dict(), args.json)
        return 1

    out_path = Path(args.out or "out.mp3")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(result.audio)
    payload = {"ok": True, "out": str(out_path), "bytes": len(result.audio), **result.to_dict()}
    _emit(payload, args.json)
    print("CLI_OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
