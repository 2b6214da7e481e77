"""
Memory Agent Main Entry Point
=============================
Run:  python -m memagent.main
  or: memagent --host 0.0.0.0 --port 8787
"""

import argparse
import sys

from memagent.server import build_services, serve
from memagent.utils.logger import get_logger, log_memory

logger = get_logger("main")


def print_banner():
    """Print a startup banner."""
    banner = """
    ╔══════════════════════════════════════════════════════╗
    ║                                                      ║
    ║        M E M O R Y   A G E N T                       ║
    ║                                                      ║
    ║        Remembers you across conversations            ║
    ║        WebSocket chat · SQLite log · Chroma recall   ║
    ║                                                      ║
    ╚══════════════════════════════════════════════════════╝
    """
    print(banner)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Memory Agent WebSocket server")
    parser.add_argument("--host", help="Bind address (default: server.host from config)")
    parser.add_argument("--port", type=int, help="Port (default: server.port from config)")
    args = parser.parse_args(argv)

    print_banner()

    # --------------------------------------------------
    # STARTUP
    # --------------------------------------------------
    logger.info("Initializing subsystems...")
    log_memory(logger)

    try:
        services = build_services()
    except Exception as e:
        logger.error(f"❌ Failed to initialize storage: {e}", exc_info=True)
        sys.exit(1)

    try:
        stats = services.memory.get_stats()
        logger.info(f"🧠 Memory: {stats.get('total_memories', 0)} stored memories")
    except Exception as e:
        logger.warning(f"⚠️  Memory index unavailable: {e}")
        logger.warning("   Continuing; replies will not recall past conversations")

    if services.generator.is_available():
        logger.info(f"✅ Ollama reachable, model={services.generator.model}")
    else:
        logger.warning("⚠️  Ollama is not running; replies will be degraded until it starts")

    logger.info("━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")
    logger.info("✅ All systems online")
    logger.info("⌨️  Press Ctrl+C to quit")
    logger.info("━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")

    serve(args.host, args.port, services=services)
    logger.info("👋 Memory Agent shut down. Goodbye.")


if __name__ == "__main__":
    main()
