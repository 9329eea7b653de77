#!/usr/bin/env python3
"""
Smoke Test Script

Validates configuration and connectivity without starting a pitch.

Checks:
1. Dependencies import
2. Environment variables are set (without printing secrets)
3. Configuration validates and provider overrides resolve
4. Groq model exists via API
5. Speech provider sockets/endpoints are reachable (optional)
"""

import asyncio
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def print_header(text: str) -> None:
    """Print a section header."""
    print(f"\n{'=' * 50}")
    print(f" {text}")
    print('=' * 50)


def print_ok(text: str) -> None:
    print(f"  [OK] {text}")


def print_error(text: str) -> None:
    print(f"  [ERR] {text}")


def print_warn(text: str) -> None:
    print(f"  [WARN] {text}")


def _mask(value: str) -> str:
    return value[:4] + "..." + value[-4:] if len(value) > 8 else "****"


def check_dependencies() -> bool:
    """Check that required dependencies are importable."""
    print_header("Checking Dependencies")

    dependencies = [
        ("fastapi", "FastAPI"),
        ("uvicorn", "Uvicorn"),
        ("websockets", "WebSockets"),
        ("openai", "OpenAI SDK"),
        ("structlog", "Structlog"),
        ("pydantic", "Pydantic"),
        ("httpx", "HTTPX"),
        ("msgspec", "msgspec"),
        ("numpy", "NumPy"),
        ("dotenv", "python-dotenv"),
    ]

    all_ok = True
    for module, name in dependencies:
        try:
            __import__(module)
            print_ok(name)
        except ImportError as e:
            print_error(f"{name}: {e}")
            all_ok = False

    return all_ok


def check_env_vars() -> bool:
    """Check that required environment variables are set."""
    print_header("Checking Environment Variables")

    from dotenv import load_dotenv
    load_dotenv()

    provider = os.getenv("LLM_PROVIDER", "groq").strip().lower()
    required_vars = ["OPENAI_API_KEY"] if provider == "openai" else ["GROQ_API_KEY", "GROQ_MODEL"]

    speech_vars = ["SMALLEST_API_KEY", "ELEVENLABS_API_KEY"]

    optional_vars = [
        "PORT",
        "LOG_LEVEL",
        "STT_PROVIDER",
        "TTS_PROVIDER",
        "PHASE_NEGOTIATION_AT",
        "PHASE_SCORECARD_AT",
        "ELEVENLABS_VOICE_ID",
        "SMALLEST_VOICE_ID",
    ]

    all_ok = True
    for var in required_vars:
        value = os.getenv(var)
        if value:
            print_ok(f"{var}: {value if var == 'GROQ_MODEL' else _mask(value)}")
        else:
            print_error(f"{var}: NOT SET")
            all_ok = False

    print("\nSpeech providers (missing keys mean the session runs on fallbacks):")
    for var in speech_vars:
        value = os.getenv(var)
        if value:
            print_ok(f"{var}: {_mask(value)}")
        else:
            print_warn(f"{var}: not set")

    print("\nOptional variables:")
    for var in optional_vars:
        value = os.getenv(var)
        if value:
            print_ok(f"{var}: {value}")
        else:
            print_warn(f"{var}: not set (using default)")

    return all_ok


def check_config() -> bool:
    """Validate configuration and show the effective provider selection."""
    print_header("Validating Configuration")

    from src.pitchroom.config import ConfigError, get_config
    from src.pitchroom.flags import load_voice_options

    config = get_config()
    try:
        config.validate()
    except ConfigError as e:
        print_error(str(e))
        return False

    options = load_voice_options(config)
    print_ok(f"capture provider: {options.capture_provider}")
    print_ok(f"render provider: {options.render_provider}")
    print_ok(
        "phases: negotiation at "
        f"{options.thresholds.negotiation_at}, scorecard at {options.thresholds.scorecard_at}"
    )
    return True


async def check_groq_model() -> bool:
    """Validate Groq model exists."""
    print_header("Validating Groq Model")

    from src.pitchroom.config import get_config
    from src.pitchroom.llm import validate_groq_model

    config = get_config()
    if config.llm_provider != "groq":
        print_warn(f"LLM_PROVIDER={config.llm_provider}; skipping")
        return True
    if not config.groq_api_key:
        print_error("GROQ_API_KEY not set")
        return False

    try:
        await validate_groq_model(config.groq_api_key, config.groq_model)
    except SystemExit as e:
        print_error(str(e))
        return False

    print_ok(f"Model '{config.groq_model}' exists")
    return True


async def check_smallest_socket() -> bool:
    """Open (and immediately close) the streaming STT socket."""
    print_header("Checking Streaming STT Socket")

    import websockets
    from src.pitchroom.config import get_config

    config = get_config()
    if not config.smallest_api_key:
        print_warn("SMALLEST_API_KEY not set; capture will use browser recognition")
        return True

    try:
        async with websockets.connect(
            config.smallest_stt_url,
            open_timeout=config.connect_timeout_seconds,
        ):
            print_ok(f"Connected to {config.smallest_stt_url}")
            return True
    except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
        print_warn(f"STT socket unreachable ({e}); capture will fall back")
        return True


async def main() -> int:
    """Run all smoke tests."""
    print("\n" + "=" * 50)
    print(" PITCH ROOM - SMOKE TEST")
    print("=" * 50)

    results = []

    results.append(("Dependencies", check_dependencies()))
    results.append(("Environment Variables", check_env_vars()))
    results.append(("Configuration", check_config()))
    results.append(("Groq Model", await check_groq_model()))
    results.append(("STT Socket", await check_smallest_socket()))

    print_header("Summary")

    all_passed = True
    for name, passed in results:
        if passed:
            print_ok(name)
        else:
            print_error(name)
            all_passed = False

    print()

    if all_passed:
        print("[OK] All checks passed!")
        print("\nNext steps:")
        print("  1. Run 'python -m server.app' to start the server")
        print("  2. Open the browser client and connect to ws://localhost:7860/ws")
        return 0
    else:
        print("[ERR] Some checks failed. Please fix the issues above.")
        return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
